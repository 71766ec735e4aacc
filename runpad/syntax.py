# Python and Kotlin script keywords; the default interpreter is Python,
# kotlinc -script is the other common setup
KEYWORDS = (
    'and', 'as', 'assert', 'async', 'await', 'break', 'class', 'continue',
    'def', 'del', 'elif', 'else', 'except', 'False', 'finally', 'for', 'from',
    'global', 'if', 'import', 'in', 'is', 'lambda', 'None', 'nonlocal', 'not',
    'or', 'pass', 'raise', 'return', 'True', 'try', 'while', 'with', 'yield',
    'fun', 'val', 'var', 'when', 'object', 'null', 'true', 'false', 'do',
    'package', 'this', 'super', 'throw', 'catch', 'interface', 'typealias',
)
STRING_QUOTES = ('"', "'")
COMMENT_MARKERS = ('#', '//')


def _is_word_char(ch):
    return ch.isalnum() or ch == '_'


def find_keyword_spans(text, keywords=KEYWORDS):
    """(start, length) of every whole-word keyword occurrence, in text order."""
    spans = []
    for keyword in keywords:
        start = text.find(keyword)
        while start != -1:
            end = start + len(keyword)
            if (start == 0 or not _is_word_char(text[start - 1])) and \
               (end == len(text) or not _is_word_char(text[end])):
                spans.append((start, len(keyword)))
            start = text.find(keyword, end)
    return sorted(spans)


def find_string_spans(text):
    """Single-line string literals; an unterminated one runs to the end of the line."""
    spans = []
    i = 0
    while i < len(text):
        if text[i] in STRING_QUOTES:
            quote = text[i]
            j = i + 1
            while j < len(text) and text[j] != quote:
                j += 2 if text[j] == '\\' else 1
            end = min(j + 1, len(text))
            spans.append((i, end - i))
            i = end
        else:
            i += 1
    return spans


def find_comment_start(text):
    """Index where a line comment begins, ignoring markers inside strings, or -1."""
    in_string = [False] * len(text)
    for start, length in find_string_spans(text):
        for k in range(start, start + length):
            in_string[k] = True
    for i in range(len(text)):
        if not in_string[i] and any(text.startswith(marker, i) for marker in COMMENT_MARKERS):
            return i
    return -1
