"""
autoaccept - Safe auto-approval of agent prompts in DevTools-enabled editors.

Finds the editor's DevTools targets, injects a small DOM probe, and clicks
"Accept" / "Run" controls whose nearby command the risk classifier admits.
The same classifier backs a PreToolUse hook for terminal commands.
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
