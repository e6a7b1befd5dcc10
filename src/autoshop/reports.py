from __future__ import annotations

from datetime import date

from psycopg import Connection


def invoice_overview(conn: Connection, date_from: date, date_to: date) -> dict:
    cur = conn.execute(
        """
        SELECT
          COUNT(*) AS invoices_count,
          COALESCE(SUM(total), 0) AS total_amount,
          COALESCE(SUM(paid_amount), 0) AS total_paid,
          COALESCE(SUM(balance), 0) AS total_outstanding,
          COALESCE(ROUND(AVG(total), 2), 0) AS avg_invoice_value
        FROM invoice
        WHERE status <> 'cancelled' AND issue_date >= %s AND issue_date < %s;
        """,
        (date_from, date_to),
    )
    row = cur.fetchone()
    cols = [d.name for d in cur.description]
    return dict(zip(cols, row))


def invoices_by_status(conn: Connection, date_from: date, date_to: date) -> list[dict]:
    cur = conn.execute(
        """
        SELECT status, COUNT(*) AS invoices_count, COALESCE(SUM(total), 0) AS total_amount
        FROM invoice
        WHERE issue_date >= %s AND issue_date < %s
        GROUP BY status
        ORDER BY status;
        """,
        (date_from, date_to),
    )
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


def monthly_invoices(conn: Connection, months: int = 12) -> list[dict]:
    cur = conn.execute(
        """
        SELECT
          date_trunc('month', issue_date)::date AS month,
          COUNT(*) AS invoices_count,
          COALESCE(SUM(total), 0) AS total_amount,
          COALESCE(SUM(paid_amount), 0) AS total_paid
        FROM invoice
        WHERE status <> 'cancelled'
        GROUP BY 1
        ORDER BY 1 DESC
        LIMIT %s;
        """,
        (months,),
    )
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


def top_billed_parts(conn: Connection, limit: int = 10) -> list[dict]:
    # joins: invoice_item + invoice, live invoices only
    cur = conn.execute(
        """
        SELECT
          COALESCE(ii.part_number, '') AS part_number,
          ii.name,
          SUM(ii.quantity) AS total_qty,
          SUM(ii.total_price) AS total_value
        FROM invoice_item ii
        JOIN invoice i ON i.id = ii.invoice_id
        WHERE ii.type = 'part' AND i.status <> 'cancelled'
        GROUP BY 1, ii.name
        ORDER BY total_qty DESC
        LIMIT %s;
        """,
        (limit,),
    )
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]
