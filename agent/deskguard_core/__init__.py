"""
deskguard_core — Desktop security-monitoring agent
==================================================
Architecture: sensor threads → queue → single aggregator worker.

  constants.py    → Version, thresholds, poll intervals
  config.py       → Paths, logging, config load/save, helpers
  models.py       → EventRecord, severities, category policy, status snapshots
  services.py     → MonitorService base (start/stop/is_running)
  debouncer.py    → ActivityDebouncer (input ticks → activity summaries)
  aggregator.py   → EventAggregator (dedup, persist, alert, correlation)
  coordinator.py  → ServiceCoordinator (parallel start/stop, restart)
  controller.py   → SessionController (lock policy, continuous monitoring)
  listeners.py    → InputMonitor (pynput → debouncer)
  sensors.py      → SessionMonitor, LoginMonitor (polling threads)
  platform_win.py → Windows: single instance, lock detection, idle, Security log
  eventlog.py     → JsonlEventLogger (persisted events)
  http_client.py  → HTTP session with retry/pooling + SSL fix
  alerts.py       → SMS / webhook / e-mail alert senders
  runner.py       → main() + auto-restart wrapper
"""
