"""
Windows-specific functionality:
  - Single instance enforcement (Mutex)
  - System lock detection (LogonUI.exe process check)
  - System-level idle time (GetLastInputInfo)
  - Security event log query (wevtutil) for logon/logoff records

Every function degrades to a neutral value off Windows.
"""

import os
import sys
import ctypes
import subprocess
import xml.etree.ElementTree as ET

from .config import log

_EXE_NAME = "deskguard.exe"
_MUTEX_NAME = "Global\\DeskGuard_5c1e"
_TH32CS_SNAPPROCESS = 0x00000002
_EVT_NS = {"e": "http://schemas.microsoft.com/win/2004/08/events/event"}


class _PROCESSENTRY32W(ctypes.Structure):
    _fields_ = [
        ("dwSize",              ctypes.c_ulong),
        ("cntUsage",            ctypes.c_ulong),
        ("th32ProcessID",       ctypes.c_ulong),
        ("th32DefaultHeapID",   ctypes.c_size_t),
        ("th32ModuleID",        ctypes.c_ulong),
        ("cntThreads",          ctypes.c_ulong),
        ("th32ParentProcessID", ctypes.c_ulong),
        ("pcPriClassBase",      ctypes.c_long),
        ("dwFlags",             ctypes.c_ulong),
        ("szExeFile",           ctypes.c_wchar * 260),
    ]


def _iter_processes():
    """Yield (pid, lowercase exe name) for every running process."""
    kernel32 = ctypes.windll.kernel32
    snapshot = kernel32.CreateToolhelp32Snapshot(_TH32CS_SNAPPROCESS, 0)
    if snapshot in (0, -1):
        return
    try:
        pe = _PROCESSENTRY32W()
        pe.dwSize = ctypes.sizeof(pe)
        ok = kernel32.Process32FirstW(snapshot, ctypes.byref(pe))
        while ok:
            yield pe.th32ProcessID, pe.szExeFile.lower()
            ok = kernel32.Process32NextW(snapshot, ctypes.byref(pe))
    finally:
        kernel32.CloseHandle(snapshot)


# ─── Single Instance Lock ────────────────────────────────────────

_instance_mutex = None


def _is_exe_running_elsewhere():
    """Return True if another process with our exe name is running."""
    our_pid = os.getpid()
    target = _EXE_NAME.lower()
    try:
        return any(name == target and pid != our_pid for pid, name in _iter_processes())
    except Exception:
        return False


def ensure_single_instance():
    """Prevent multiple instances using a Windows named mutex.

    A mutex left behind by Fast Startup (hybrid shutdown) is reclaimed when
    no other instance of the exe is actually running.
    """
    global _instance_mutex
    if sys.platform != "win32":
        return True

    try:
        _instance_mutex = ctypes.windll.kernel32.CreateMutexW(None, False, _MUTEX_NAME)
        last_error = ctypes.windll.kernel32.GetLastError()

        if last_error == 183:  # ERROR_ALREADY_EXISTS
            if _is_exe_running_elsewhere():
                log.info("Another instance is already running. Exiting.")
                return False

            log.info("Stale mutex detected (no running instance) — reclaiming")
            ctypes.windll.kernel32.CloseHandle(_instance_mutex)
            _instance_mutex = ctypes.windll.kernel32.CreateMutexW(None, True, _MUTEX_NAME)
        return True
    except Exception:
        return True


# ─── System Lock Detection ──────────────────────────────────────

def is_system_locked():
    """Check if the Windows workstation is locked.

    Primary method: LogonUI.exe is present only while the lock screen /
    credential UI is up (UAC prompts use consent.exe instead).
    Fallback: OpenInputDesktop fails on the secure desktop.
    """
    if sys.platform != "win32":
        return False
    try:
        if any(name == "logonui.exe" for _, name in _iter_processes()):
            return True
        hDesktop = ctypes.windll.user32.OpenInputDesktop(0, False, 0x0001)
        if hDesktop == 0:
            return True
        ctypes.windll.user32.CloseDesktop(hDesktop)
        return False
    except Exception:
        return False


# ─── System-level idle time (elevation-aware) ────────────────────

class _LASTINPUTINFO(ctypes.Structure):
    _fields_ = [("cbSize", ctypes.c_uint), ("dwTime", ctypes.c_ulong)]


def get_system_idle_seconds():
    """
    OS-level idle time via GetLastInputInfo, regardless of which process
    received the input. Returns seconds since last input, or -1 on failure.
    """
    if sys.platform != "win32":
        return -1
    try:
        lii = _LASTINPUTINFO()
        lii.cbSize = ctypes.sizeof(_LASTINPUTINFO)
        if ctypes.windll.user32.GetLastInputInfo(ctypes.byref(lii)):
            tick_now = ctypes.windll.kernel32.GetTickCount()
            elapsed_ms = (tick_now - lii.dwTime) & 0xFFFFFFFF
            return elapsed_ms / 1000.0
        return -1
    except Exception:
        return -1


# ─── Security log (logon / logoff) ───────────────────────────────

def parse_security_events(xml_text):
    """
    Parse `wevtutil qe ... /f:xml` output into dicts:
    {"recordId", "eventId", "timeCreated", "user"}.
    wevtutil emits bare <Event> siblings, so they are wrapped first.
    """
    if not xml_text or not xml_text.strip():
        return []
    root = ET.fromstring(f"<Events>{xml_text}</Events>")
    events = []
    for ev in root.findall("e:Event", _EVT_NS):
        system = ev.find("e:System", _EVT_NS)
        if system is None:
            continue
        data = {
            d.get("Name"): (d.text or "")
            for d in ev.findall("e:EventData/e:Data", _EVT_NS)
        }
        created = system.find("e:TimeCreated", _EVT_NS)
        events.append({
            "recordId": int(system.findtext("e:EventRecordID", "0", _EVT_NS)),
            "eventId": int(system.findtext("e:EventID", "0", _EVT_NS)),
            "timeCreated": created.get("SystemTime", "") if created is not None else "",
            "user": data.get("TargetUserName") or data.get("SubjectUserName") or "unknown",
        })
    return events


def query_security_events(event_ids, max_events=50):
    """
    Newest-first logon/logoff records from the Security log.
    Needs administrator rights; returns [] when unavailable.
    """
    if sys.platform != "win32":
        return []
    id_filter = " or ".join(f"EventID={i}" for i in event_ids)
    cmd = [
        "wevtutil", "qe", "Security",
        f"/q:*[System[({id_filter})]]",
        f"/c:{max_events}", "/rd:true", "/f:xml",
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=15)
    except (OSError, subprocess.SubprocessError) as e:
        log.warning("Security log query failed: %s", e)
        return []
    if result.returncode != 0:
        log.warning("Security log query denied (rc=%d): %s",
                    result.returncode, result.stderr.strip()[:200])
        return []
    try:
        return parse_security_events(result.stdout)
    except ET.ParseError as e:
        log.warning("Security log output unparseable: %s", e)
        return []
