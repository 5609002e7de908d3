"""Native OS notifications for Goalify Sync."""

import logging
import platform
import shutil
import subprocess

from .config import APP_NAME

logger = logging.getLogger(__name__)

FOCUS_COMPLETE_TITLE = "Focus complete"


def send_notification(title: str, message: str, sound: bool = True) -> None:
    """Send a native OS notification.

    Never raises; a missing notifier or a failed call is logged at debug.

    Args:
        title: Notification title.
        message: Notification body text.
        sound: Whether to play a sound (macOS only).
    """
    system = platform.system()
    try:
        if system == "Darwin":
            _send_macos(title, message, sound)
        elif system == "Windows":
            _send_windows(title, message)
        elif system == "Linux":
            _send_linux(title, message)
        else:
            logger.debug(f"Notifications not supported on {system}")
    except Exception as e:
        logger.debug(f"Failed to send notification: {e}")


def notify_focus_complete(session_title: str) -> None:
    """Default notifier of the focus timer."""
    message = f"You finished focusing on {session_title}" if session_title else "You finished your focus session"
    send_notification(FOCUS_COMPLETE_TITLE, message)


def _send_macos(title: str, message: str, sound: bool) -> None:
    """Send notification via osascript on macOS."""
    # AppleScript string literals need backslashes and double quotes escaped.
    safe_title = title.replace("\\", "\\\\").replace('"', '\\"')
    safe_message = message.replace("\\", "\\\\").replace('"', '\\"')

    sound_clause = ' sound name "default"' if sound else ""
    script = f'display notification "{safe_message}" with title "{safe_title}"{sound_clause}'
    subprocess.run(["osascript", "-e", script], capture_output=True, timeout=5)


def _send_windows(title: str, message: str) -> None:
    """Send toast notification via PowerShell on Windows."""
    safe_title = title.replace("'", "''")
    safe_message = message.replace("'", "''")

    ps_script = (
        "[Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, "
        "ContentType = WindowsRuntime] > $null; "
        "$template = [Windows.UI.Notifications.ToastNotificationManager]::"
        "GetTemplateContent([Windows.UI.Notifications.ToastTemplateType]::ToastText02); "
        "$nodes = $template.GetElementsByTagName('text'); "
        f"$nodes.Item(0).AppendChild($template.CreateTextNode('{safe_title}')) > $null; "
        f"$nodes.Item(1).AppendChild($template.CreateTextNode('{safe_message}')) > $null; "
        "$toast = [Windows.UI.Notifications.ToastNotification]::new($template); "
        "[Windows.UI.Notifications.ToastNotificationManager]::"
        f"CreateToastNotifier('{APP_NAME}').Show($toast)"
    )
    subprocess.run(["powershell", "-Command", ps_script], capture_output=True, timeout=10)


def _send_linux(title: str, message: str) -> None:
    """Send notification via notify-send (libnotify)."""
    if shutil.which("notify-send") is None:
        logger.debug("notify-send not found, skipping notification")
        return
    subprocess.run(
        ["notify-send", "--app-name", APP_NAME, title, message],
        capture_output=True,
        timeout=5,
    )
