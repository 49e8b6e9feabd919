"""
ARAG Agent Copilot — Output Formatters
Plain-text rendering of case results and client history for the terminal.
"""


# ============================================================
# Text truncation
# ============================================================

def _truncate(text: str, max_len: int = 120) -> str:
    """History previews show the first 120 characters."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def _rule(title: str, width: int = 60) -> str:
    return f"{'=' * width}\n{title}\n{'=' * width}"


# ============================================================
# History
# ============================================================

def format_history(history: list, client_id: str = "") -> str:
    """Client memory panel: date, policy tag, summary preview."""
    header = f"CLIENT MEMORY{f': {client_id}' if client_id else ''} ({len(history)} THREADS)"
    if not history:
        return f"{header}\n  No history for this ID"
    lines = [header]
    for record in history:
        policy = f"  [POL: {record.policy_number}]" if record.policy_number else ""
        lines.append(f"  • {record.date}{policy}")
        lines.append(f"    {_truncate(record.summary)}")
    return "\n".join(lines)


# ============================================================
# Case result
# ============================================================

def format_result(result, client_id: str = "") -> str:
    """Full case result: extraction bar, analysis, and both drafts."""
    policy = result.extracted_policy_number or "MISSING - REQUESTED"
    return "\n".join([
        _rule("CASE RESULT"),
        f"Client Name:   {result.extracted_client_name}",
        f"Policy Number: {policy}",
        f"Mapped to:     {client_id or result.extracted_client_name}",
        "",
        "--- INTERNAL ANALYSIS ---",
        result.analysis,
        "",
        "--- RECOMMENDATION ---",
        result.recommendation,
        "",
        "--- NEXT STEPS ---",
        result.next_steps,
        "",
        "--- DRAFT (EN) ---",
        result.reply_english,
        "",
        "--- DRAFT (DE) ---",
        result.reply_german,
    ])


def format_failure(kind: str, message: str) -> str:
    return f"CASE FAILED [{kind}]\n{message}"
