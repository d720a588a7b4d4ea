"""
InputMonitor — pynput mouse/keyboard listeners feeding an ActivityDebouncer.
PRIVACY: Only tick counts and positions — no key content captured.
"""

from pynput import mouse, keyboard

from .config import log
from .models import EventCategory
from .services import MonitorService


class InputMonitor(MonitorService):
    """
    Owns the pynput listener threads. Each callback is one tick into the
    debouncer; check_and_restart() revives listeners that died silently.
    """

    category = EventCategory.INPUT

    def __init__(self, debouncer):
        super().__init__("InputMonitor")
        self._debouncer = debouncer
        self._mouse_listener = None
        self._keyboard_listener = None

    # ── pynput callbacks (listener threads) ──────────────────

    def _on_move(self, x, y):
        self._debouncer.on_move(x, y)

    def _on_click(self, x, y, button, pressed):
        if pressed:
            self._debouncer.on_click()

    def _on_press(self, key):
        self._debouncer.on_key()

    def _on_release(self, key):
        pass  # Only count presses to avoid double-counting

    # ── Lifecycle ────────────────────────────────────────────

    def _new_mouse_listener(self):
        listener = mouse.Listener(on_move=self._on_move, on_click=self._on_click)
        listener.daemon = True
        listener.start()
        return listener

    def _new_keyboard_listener(self):
        listener = keyboard.Listener(on_press=self._on_press, on_release=self._on_release)
        listener.daemon = True
        listener.start()
        return listener

    def _on_start(self):
        self._debouncer.start()
        self._mouse_listener = self._new_mouse_listener()
        self._keyboard_listener = self._new_keyboard_listener()
        log.info("Input listeners started (activity summaries — no keylogging)")

    def _on_stop(self):
        for listener in (self._mouse_listener, self._keyboard_listener):
            if listener is not None:
                try:
                    listener.stop()
                except Exception as e:
                    log.warning("Listener stop error: %s", e)
        self._mouse_listener = None
        self._keyboard_listener = None
        self._debouncer.stop()

    @property
    def is_running(self):
        if not self._running:
            return False
        return all(
            listener is not None and listener.is_alive()
            for listener in (self._mouse_listener, self._keyboard_listener)
        )

    def check_and_restart(self):
        """Restart dead listeners. Called from the controller's watchdog."""
        if not self._running:
            return
        if self._mouse_listener is None or not self._mouse_listener.is_alive():
            log.warning("Mouse listener died — restarting")
            self._mouse_listener = self._new_mouse_listener()
        if self._keyboard_listener is None or not self._keyboard_listener.is_alive():
            log.warning("Keyboard listener died — restarting")
            self._keyboard_listener = self._new_keyboard_listener()
