import os
import sys
import shlex
import logging
import html

from PyQt5.QtWidgets import (
    QApplication, QMainWindow, QPushButton, QFileDialog, QVBoxLayout,
    QHBoxLayout, QWidget, QTextEdit, QPlainTextEdit, QMessageBox, QInputDialog,
    QLineEdit, QLabel, QSplitter, QDialog, QFormLayout, QSpinBox, QDoubleSpinBox
)
from PyQt5.QtGui import QFont, QColor, QSyntaxHighlighter, QTextCharFormat
from PyQt5.QtCore import Qt, pyqtSignal, QObject

from runpad import __version__
from runpad.config import (
    APP_NAME, HISTORY_FILE_NAME, RunnerSettings, get_app_dir, load_settings,
    save_settings,
)
from runpad.errors import RunpadError, SettingsError
from runpad.history import RunHistory
from runpad.lifecycle import ProcessLifecycleManager
from runpad.logs import setup_logging
from runpad.poller import OutputPoller
from runpad.script_store import ScriptFileStore
from runpad.status import RunStatus
from runpad.syntax import KEYWORDS, find_comment_start, find_keyword_spans, find_string_spans

logger = logging.getLogger(__name__)

CONSOLE_STYLE = """
    QTextEdit, QPlainTextEdit {
        background-color: #1e1e1e;
        color: #ffffff;
        border: 1px solid #555;
    }
"""

STATUS_COLORS = {
    RunStatus.IDLE: "#555555",
    RunStatus.RUNNING: "#2196F3",
    RunStatus.FINISHED: "#4CAF50",
    RunStatus.INTERRUPTED: "#FF9800",
    RunStatus.FAILED: "#f44336",
}


class OutputEmitter(QObject):
    """Carries channel updates from worker threads onto the GUI thread."""
    status_signal = pyqtSignal(object)  # RunState
    output_signal = pyqtSignal(object)  # OutputSnapshot
    error_signal = pyqtSignal(str)  # launch error text


def _char_format(color, bold=False, italic=False):
    fmt = QTextCharFormat()
    fmt.setForeground(QColor(color))
    if bold:
        fmt.setFontWeight(QFont.Bold)
    fmt.setFontItalic(italic)
    return fmt


class CodeHighlighter(QSyntaxHighlighter):
    def __init__(self, document, keywords=KEYWORDS):
        super().__init__(document)
        self.keywords = keywords
        self.keyword_format = _char_format("#569CD6", bold=True)
        self.string_format = _char_format("#CE9178")
        self.comment_format = _char_format("#6A9955", italic=True)

    def highlightBlock(self, text):
        # Later passes win: a keyword inside a string or comment is not highlighted
        for start, length in find_keyword_spans(text, self.keywords):
            self.setFormat(start, length, self.keyword_format)
        for start, length in find_string_spans(text):
            self.setFormat(start, length, self.string_format)
        comment = find_comment_start(text)
        if comment >= 0:
            self.setFormat(comment, len(text) - comment, self.comment_format)


class SettingsDialog(QDialog):
    def __init__(self, parent=None, settings=None):
        super().__init__(parent)
        self.setWindowTitle("Runpad Settings")
        self.settings = settings if settings is not None else RunnerSettings()
        self.init_ui()

    def init_ui(self):
        layout = QFormLayout(self)

        self.interpreter_edit = QLineEdit(shlex.join(self.settings.interpreter))
        self.interpreter_edit.setToolTip("Command that runs the script. Use {script} to place the "
                                         "script path, otherwise it is appended.")
        layout.addRow("Interpreter command:", self.interpreter_edit)

        self.path_fields = {}
        for key, label in (("script_path", "Script file:"),
                           ("stdout_path", "Output file:"),
                           ("stderr_path", "Errors file:")):
            line_edit = QLineEdit(getattr(self.settings, key))
            browse_btn = QPushButton("Browse...")
            browse_btn.clicked.connect(lambda checked, le=line_edit, t=label: self.browse_file(le, t))

            h_layout = QHBoxLayout()
            h_layout.addWidget(line_edit)
            h_layout.addWidget(browse_btn)
            layout.addRow(label, h_layout)
            self.path_fields[key] = line_edit

        self.poll_spin = QSpinBox()
        self.poll_spin.setRange(10, 10000)
        self.poll_spin.setSuffix(" ms")
        self.poll_spin.setValue(self.settings.poll_interval_ms)
        layout.addRow("Refresh interval:", self.poll_spin)

        self.timeout_spin = QDoubleSpinBox()
        self.timeout_spin.setRange(0.0, 60.0)
        self.timeout_spin.setSingleStep(0.5)
        self.timeout_spin.setSuffix(" s")
        self.timeout_spin.setValue(self.settings.term_timeout)
        layout.addRow("Stop grace period:", self.timeout_spin)

        buttons_layout = QHBoxLayout()
        save_btn = QPushButton("Save")
        save_btn.clicked.connect(self.accept)
        cancel_btn = QPushButton("Cancel")
        cancel_btn.clicked.connect(self.reject)
        buttons_layout.addStretch()
        buttons_layout.addWidget(save_btn)
        buttons_layout.addWidget(cancel_btn)
        layout.addRow(buttons_layout)

    def browse_file(self, line_edit, title):
        path, _ = QFileDialog.getSaveFileName(self, title, line_edit.text(), "All Files (*)",
                                              options=QFileDialog.DontConfirmOverwrite)
        if path:
            line_edit.setText(path)

    def get_settings(self):
        try:
            interpreter = shlex.split(self.interpreter_edit.text().strip())
        except ValueError:
            interpreter = self.interpreter_edit.text().split()
        data = {key: line_edit.text().strip() for key, line_edit in self.path_fields.items()}
        data["interpreter"] = interpreter
        data["poll_interval_ms"] = self.poll_spin.value()
        data["term_timeout"] = self.timeout_spin.value()
        # Blank path fields keep their current value
        for key, value in list(data.items()):
            if value == "":
                data[key] = getattr(self.settings, key)
        return RunnerSettings.from_dict(data, base_dir=self.settings.base_dir)


class HistoryDialog(QDialog):
    def __init__(self, parent, entries):
        super().__init__(parent)
        self.setWindowTitle("Run History")
        self.resize(760, 420)
        layout = QVBoxLayout(self)
        layout.addWidget(QLabel(f"Showing last {len(entries)} runs:"))

        text_edit = QTextEdit()
        text_edit.setReadOnly(True)
        text_edit.setFont(QFont("Consolas", 9))
        text_edit.setStyleSheet(CONSOLE_STYLE)
        text_edit.setHtml("<br>".join(self.format_entry(entry) for entry in entries))
        layout.addWidget(text_edit)

        close_btn = QPushButton("Close")
        close_btn.clicked.connect(self.accept)
        layout.addWidget(close_btn, alignment=Qt.AlignRight)

    @staticmethod
    def format_entry(entry):
        status = entry.get("status", "N/A")
        if status == RunStatus.FINISHED.value:
            status_color = "green" if entry.get("exit_code") == 0 else "red"
        elif status == RunStatus.FAILED.value:
            status_color = "red"
        else:
            status_color = "orange"
        exit_code = entry.get("exit_code")
        return (
            f'<span style="color:#ADADAD;">[{html.escape(str(entry.get("timestamp", "N/A")))}]</span> '
            f'Run #{entry.get("run_id", "?")} '
            f'<span style="color:{status_color};">{html.escape(str(status))}</span>, '
            f'Exit Code: {"-" if exit_code is None else exit_code}, '
            f'Error: <span style="color:orange;">{html.escape(str(entry.get("error", "None")))}</span>'
        )


class RunpadWindow(QMainWindow):
    def __init__(self, settings, manager=None, poller=None, history=None):
        super().__init__()
        self.setWindowTitle(f"{APP_NAME} - Run")
        self.setGeometry(100, 100, 1200, 800)

        self.settings = settings
        self.history = history or RunHistory(settings.resolve(HISTORY_FILE_NAME))
        self.manager = manager or ProcessLifecycleManager(settings, history=self.history)
        self.poller = poller or OutputPoller(settings.stdout_file, settings.stderr_file,
                                             settings.poll_interval_ms)
        self._shown_text = {}

        self.emitter = OutputEmitter()
        self.emitter.status_signal.connect(self.apply_status)
        self.emitter.output_signal.connect(self.show_output)
        self.emitter.error_signal.connect(self.show_launch_error)

        self.init_ui()
        self.editor.setPlainText(ScriptFileStore(settings.script_file).load())

        # Channels call back on worker threads; the signals queue onto this one
        self.manager.subscribe(self.emitter.status_signal.emit, replay=True)
        self.poller.subscribe(self.emitter.output_signal.emit)
        self.poller.start()

    def init_ui(self):
        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)

        self.init_toolbar(main_layout)

        splitter = QSplitter(Qt.Horizontal)

        code_widget = QWidget()
        code_layout = QVBoxLayout(code_widget)
        code_layout.addWidget(QLabel("Code:"))
        self.editor = QPlainTextEdit()
        self.editor.setFont(QFont("Consolas", 11))
        self.editor.setLineWrapMode(QPlainTextEdit.NoWrap)
        self.editor.setStyleSheet(CONSOLE_STYLE)
        self.editor.setTabStopDistance(4 * self.editor.fontMetrics().horizontalAdvance(' '))
        self.highlighter = CodeHighlighter(self.editor.document())
        code_layout.addWidget(self.editor)

        views = QSplitter(Qt.Vertical)
        self.output_view = self.make_view()
        self.errors_view = self.make_view()
        views.addWidget(self.labeled("Output", self.output_view))
        views.addWidget(self.labeled("Errors", self.errors_view))

        splitter.addWidget(code_widget)
        splitter.addWidget(views)
        splitter.setSizes([720, 480])
        main_layout.addWidget(splitter)

        self.init_run_bar(main_layout)

    def init_toolbar(self, layout):
        toolbar = QHBoxLayout()

        settings_btn = QPushButton("Settings")
        settings_btn.clicked.connect(self.open_settings)

        history_btn = QPushButton("Run History")
        history_btn.clicked.connect(self.view_history)

        export_btn = QPushButton("Export History (CSV)")
        export_btn.clicked.connect(self.export_history_csv)

        for btn in [settings_btn, history_btn, export_btn]:
            toolbar.addWidget(btn)
        toolbar.addStretch()
        layout.addLayout(toolbar)

    def init_run_bar(self, layout):
        run_bar = QHBoxLayout()

        self.run_btn = QPushButton("RUN")
        self.run_btn.setShortcut("Ctrl+Return")
        self.run_btn.setToolTip("Run (Ctrl+Enter). Stops the current run first.")
        self.run_btn.clicked.connect(self.run_code)
        self.run_btn.setStyleSheet("QPushButton { background-color: #2196F3; color: white; font-weight: bold; }")

        self.stop_btn = QPushButton("STOP")
        self.stop_btn.setShortcut("Ctrl+.")
        self.stop_btn.clicked.connect(self.stop_code)
        self.stop_btn.setStyleSheet("QPushButton { background-color: #f44336; color: white; font-weight: bold; }")
        self.stop_btn.setEnabled(False)

        self.status_label = QLabel(RunStatus.IDLE.value)
        self.exit_code_label = QLabel("")

        run_bar.addWidget(self.run_btn)
        run_bar.addWidget(self.stop_btn)
        run_bar.addSpacing(20)
        run_bar.addWidget(self.status_label)
        run_bar.addStretch()
        run_bar.addWidget(self.exit_code_label)
        layout.addLayout(run_bar)

    def make_view(self):
        view = QPlainTextEdit()
        view.setReadOnly(True)
        view.setLineWrapMode(QPlainTextEdit.NoWrap)
        view.setFont(QFont("Consolas", 10))
        view.setStyleSheet(CONSOLE_STYLE)
        return view

    def labeled(self, title, widget):
        container = QWidget()
        container_layout = QVBoxLayout(container)
        container_layout.setContentsMargins(0, 0, 0, 0)
        container_layout.addWidget(QLabel(title))
        container_layout.addWidget(widget)
        return container

    def run_code(self):
        # Stop-then-spawn runs on the lifecycle worker, off the Qt thread
        future = self.manager.request_start(self.editor.toPlainText())
        future.add_done_callback(self._report_launch)
        return future

    def stop_code(self):
        self.stop_btn.setEnabled(False)
        return self.manager.request_stop()

    def _report_launch(self, future):
        # Runs on the lifecycle worker thread
        if future.cancelled():
            return
        error = future.exception()
        if isinstance(error, RunpadError):
            self.emitter.error_signal.emit(str(error))
        elif error is not None:
            logger.error("Run request failed", exc_info=error)

    def show_launch_error(self, message):
        QMessageBox.critical(self, "Launch Error", message)

    def apply_status(self, state):
        self.status_label.setText(state.describe())
        self.status_label.setStyleSheet(f"color: {STATUS_COLORS[state.status]}; font-weight: bold;")
        self.stop_btn.setEnabled(state.status is RunStatus.RUNNING)
        if state.status is RunStatus.FINISHED:
            self.exit_code_label.setText(f"Last return code is {state.exit_code}")

    def show_output(self, snapshot):
        self.replace_text(self.output_view, snapshot.stdout)
        self.replace_text(self.errors_view, snapshot.stderr)

    def replace_text(self, view, text):
        # Skip identical ticks so selection and scrolling survive the refresh
        if self._shown_text.get(id(view)) == text:
            return
        self._shown_text[id(view)] = text

        vbar = view.verticalScrollBar()
        hbar = view.horizontalScrollBar()
        follow = vbar.value() >= vbar.maximum() - 2
        v_pos, h_pos = vbar.value(), hbar.value()
        view.setPlainText(text)
        vbar.setValue(vbar.maximum() if follow else v_pos)
        hbar.setValue(h_pos)

    def open_settings(self):
        dialog = SettingsDialog(self, self.settings)
        if dialog.exec_() != QDialog.Accepted:
            return
        self.apply_settings(dialog.get_settings())
        try:
            save_settings(self.settings)
        except SettingsError as e:
            QMessageBox.warning(self, "Settings Error", str(e))
            return
        message = "Settings have been updated."
        if self.manager.is_running:
            message += "\nThe current run keeps its old settings; they apply from the next run."
        QMessageBox.information(self, "Settings Saved", message)

    def apply_settings(self, settings):
        self.settings = settings
        self.manager.settings = settings
        self.poller.configure(settings.stdout_file, settings.stderr_file, settings.poll_interval_ms)

    def view_history(self):
        keyword, ok = QInputDialog.getText(self, "Filter History",
                                           "Enter a keyword to filter runs (optional):")
        if not ok:
            return
        entries = self.history.entries(keyword=keyword.strip() or None, limit=100)
        if not entries:
            QMessageBox.information(self, "Run History", "No runs recorded yet.")
            return
        HistoryDialog(self, entries).exec_()

    def export_history_csv(self):
        path, _ = QFileDialog.getSaveFileName(self, "Export History as CSV", "run_history.csv",
                                              "CSV Files (*.csv)")
        if not path:
            return
        try:
            count = self.history.export_csv(path)
        except OSError as e:
            QMessageBox.critical(self, "Export Error", f"Failed to export history: {e}")
            return
        QMessageBox.information(self, "Success", f"Exported {count} runs to {path}")

    def closeEvent(self, event):
        logger.info("Shutting down")
        self.manager.shutdown()
        self.poller.stop()
        try:
            ScriptFileStore(self.settings.script_file).persist(self.editor.toPlainText())
        except RunpadError as e:
            logger.warning("Editor text not saved: %s", e)
        event.accept()


def main(argv=None):
    argv = sys.argv if argv is None else argv
    app_dir = get_app_dir()
    setup_logging(app_dir)

    # Enable high DPI support
    QApplication.setAttribute(Qt.AA_EnableHighDpiScaling, True)
    QApplication.setAttribute(Qt.AA_UseHighDpiPixmaps, True)

    app = QApplication(argv)
    app.setStyle('Fusion')
    app.setApplicationName(APP_NAME)
    app.setApplicationVersion(__version__)

    settings_error = None
    try:
        settings = load_settings(app_dir)
    except SettingsError as e:
        logger.warning("%s", e)
        settings_error = e
        settings = RunnerSettings(base_dir=app_dir)

    window = RunpadWindow(settings)
    window.show()
    if settings_error is not None:
        QMessageBox.warning(window, "Settings Error", f"{settings_error}\nDefault settings will be used.")

    logger.info("%s %s started, files under %s", APP_NAME, __version__, os.path.abspath(app_dir))
    return app.exec_()
