"""CLI summary — prints position statistics to the console."""

from chartscope.positions.models import PositionStats


def print_stats(stats: PositionStats) -> str:
    """Format and print position statistics.

    Returns:
        The formatted string (also printed to stdout).
    """
    lines = [
        "──────────────── ChartScope Positions ────────────────",
        f"  Total:           {stats.total_positions}",
        f"  Active:          {stats.active_positions}",
        f"  Pending:         {stats.pending_positions}",
        f"  Win rate:        {stats.win_rate}%",
        f"  Avg R:R:         {stats.avg_risk_reward:.2f}",
        "──────────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output
