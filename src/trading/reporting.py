# === MODULE PURPOSE ===
# Portfolio and trade-history reports built with pandas.

# === KEY CONCEPTS ===
# - Portfolio summary: cash, market value of open holdings, P&L totals
# - Daily summary: transactions grouped by UTC date; sells add cash, buys spend it
# - Stock statistics: per-stock buy/sell volume, average prices and P&L

from typing import Any

import pandas as pd

from src.market.models import Stock
from src.trading.models import Holding, Transaction

TRANSACTION_COLUMNS = ["id", "stockId", "stockName", "type", "quantity", "price", "margin", "timestamp", "total"]


def transactions_frame(transactions: list[Transaction]) -> pd.DataFrame:
    """Transactions as a DataFrame (empty frame with the right columns if none)."""
    if not transactions:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS)
    df = pd.DataFrame([t.to_dict() for t in transactions])
    return df[TRANSACTION_COLUMNS]


def portfolio_summary(
    balance: float,
    holdings: list[Holding],
    stocks: list[Stock],
) -> dict[str, Any]:
    """
    Account-level totals.

    portfolioValue is the absolute market value of open holdings.
    pnlPercent is total P&L relative to (portfolioValue - unrealized).
    """
    prices = {s.id: s.current_value for s in stocks}
    open_holdings = [h for h in holdings if h.is_open]

    portfolio_value = sum(
        abs(h.quantity * prices[h.stock_id]) for h in open_holdings if h.stock_id in prices
    )
    unrealized = sum(h.unrealized_pnl for h in open_holdings)
    realized = sum(h.realized_pnl for h in holdings)
    total = unrealized + realized
    invested = portfolio_value - unrealized

    return {
        "balance": balance,
        "portfolioValue": portfolio_value,
        "unrealizedPnL": unrealized,
        "realizedPnL": realized,
        "totalPnL": total,
        "pnlPercent": total / invested * 100 if invested > 0 else 0.0,
        "openHoldings": len(open_holdings),
        "closedHoldings": len(holdings) - len(open_holdings),
    }


def daily_summary(transactions: list[Transaction]) -> list[dict[str, Any]]:
    """Per-date trade counts and cash flow, newest date first."""
    df = transactions_frame(transactions)
    if df.empty:
        return []

    df["date"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True).dt.strftime("%Y-%m-%d")
    df["buyTotal"] = df["total"].where(df["type"] == "buy", 0.0)
    df["sellTotal"] = df["total"].where(df["type"] == "sell", 0.0)

    grouped = (
        df.groupby("date")
        .agg(
            trades=("id", "count"),
            buyTotal=("buyTotal", "sum"),
            sellTotal=("sellTotal", "sum"),
        )
        .sort_index(ascending=False)
        .reset_index()
    )
    grouped["netCashFlow"] = grouped["sellTotal"] - grouped["buyTotal"]

    return [
        {
            "date": row.date,
            "trades": int(row.trades),
            "buyTotal": float(row.buyTotal),
            "sellTotal": float(row.sellTotal),
            "netCashFlow": float(row.netCashFlow),
        }
        for row in grouped.itertuples(index=False)
    ]


def stock_statistics(
    transactions: list[Transaction],
    holdings: list[Holding],
    stocks: list[Stock],
) -> list[dict[str, Any]]:
    """
    Per-stock trading statistics, best total P&L first.

    Delisted stocks keep their rows with currentPrice None.
    """
    df = transactions_frame(transactions)
    if df.empty:
        return []

    is_buy = df["type"] == "buy"
    df["buyQuantity"] = df["quantity"].where(is_buy, 0)
    df["sellQuantity"] = df["quantity"].where(~is_buy, 0)
    df["buyValue"] = df["total"].where(is_buy, 0.0)
    df["sellValue"] = df["total"].where(~is_buy, 0.0)

    stats = df.groupby("stockId", sort=False).agg(
        stockName=("stockName", "last"),
        totalBuyQuantity=("buyQuantity", "sum"),
        totalSellQuantity=("sellQuantity", "sum"),
        totalBuyValue=("buyValue", "sum"),
        totalSellValue=("sellValue", "sum"),
        trades=("id", "count"),
    )
    first_buy = df[is_buy].groupby("stockId")["timestamp"].min()
    last_sell = df[~is_buy].groupby("stockId")["timestamp"].max()

    prices = {s.id: s.current_value for s in stocks}
    realized: dict[str, float] = {}
    unrealized: dict[str, float] = {}
    for h in holdings:
        realized[h.stock_id] = realized.get(h.stock_id, 0.0) + h.realized_pnl
        if h.is_open:
            unrealized[h.stock_id] = unrealized.get(h.stock_id, 0.0) + h.unrealized_pnl

    rows = []
    for stock_id, row in stats.iterrows():
        buy_qty = int(row["totalBuyQuantity"])
        sell_qty = int(row["totalSellQuantity"])
        stock_realized = realized.get(stock_id, 0.0)
        stock_unrealized = unrealized.get(stock_id, 0.0)
        rows.append(
            {
                "stockId": stock_id,
                "stockName": row["stockName"],
                "trades": int(row["trades"]),
                "totalBuyQuantity": buy_qty,
                "totalSellQuantity": sell_qty,
                "totalBuyValue": float(row["totalBuyValue"]),
                "totalSellValue": float(row["totalSellValue"]),
                "avgBuyPrice": float(row["totalBuyValue"]) / buy_qty if buy_qty else 0.0,
                "avgSellPrice": float(row["totalSellValue"]) / sell_qty if sell_qty else 0.0,
                "realizedPnL": stock_realized,
                "unrealizedPnL": stock_unrealized,
                "totalPnL": stock_realized + stock_unrealized,
                "firstBuyAt": int(first_buy[stock_id]) if stock_id in first_buy.index else None,
                "lastSellAt": int(last_sell[stock_id]) if stock_id in last_sell.index else None,
                "currentPrice": prices.get(stock_id),
            }
        )

    rows.sort(key=lambda r: r["totalPnL"], reverse=True)
    return rows
