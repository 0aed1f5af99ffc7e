"""CLI dashboard — prints engine status to the console."""


def print_status(status: dict) -> str:
    """Format and print an engine snapshot.

    Args:
        status: Dict produced by ``CycleEngine.snapshot()``.

    Returns:
        The formatted string (also printed to stdout).
    """
    stats = status.get("stats", {})
    balance = status.get("balance", {})
    price = status.get("current_price") or 0.0
    total_value = status.get("total_value")
    orders = status.get("open_orders", [])

    balance_str = ", ".join(f"{amount:,.4f} {asset}" for asset, amount in balance.items())
    value_str = f"${total_value:,.2f}" if total_value is not None else "N/A"
    emergency_str = "ACTIVE" if status.get("emergency_mode") else "off"

    lines = [
        "──────────────── LoopTrade Status ────────────────",
        f"  Status:          {status.get('status', 'unknown')}",
        f"  Mode:            {status.get('mode', 'unknown')}",
        f"  Pair:            {status.get('pair', 'N/A')}",
        f"  Price:           ${price:,.2f}",
        f"  Balance:         {balance_str or 'N/A'}",
        f"  Total Value:     {value_str}",
        f"  Emergency:       {emergency_str}",
        f"  Cycles:          {stats.get('total_cycles', 0)}",
        f"  Win Rate:        {stats.get('win_rate', 0.0) * 100:.1f}%",
        f"  Total Profit:    ${stats.get('total_profit', 0.0):,.2f}",
        f"  Daily Profit:    ${stats.get('daily_profit', 0.0):,.2f}",
    ]
    for order in orders:
        lines.append(
            f"  Open {order['side']:<4}        "
            f"{order['quantity']:.4f} @ ${order['trigger_price']:,.2f}"
        )
    lines.append("──────────────────────────────────────────────────")
    output = "\n".join(lines)
    print(output)
    return output
