#!/usr/bin/env python3
"""
Retry wallet credits for open reconciliation issues.

Usage:
  python retry_settlements.py                 # uses DATABASE_URL env or ./payments.db
  python retry_settlements.py --dry-run
  python retry_settlements.py --limit 20
  python retry_settlements.py --issue 7
"""

import argparse
import logging
from typing import List, Optional

from database import SessionLocal, create_db
from models import IssueStatus, ReconciliationIssue
from settlement import SettlementError, retry_reconciliation_issue

logger = logging.getLogger("retry_settlements")


def open_issue_ids(db, limit: Optional[int] = None, issue_id: Optional[int] = None) -> List[int]:
    q = db.query(ReconciliationIssue.id).filter(ReconciliationIssue.status == IssueStatus.open)
    if issue_id is not None:
        q = q.filter(ReconciliationIssue.id == issue_id)
    q = q.order_by(ReconciliationIssue.id.asc())
    if limit:
        q = q.limit(int(limit))
    return [row.id for row in q.all()]

def run(dry_run: bool = False, limit: Optional[int] = None, issue_id: Optional[int] = None,
        session_factory=SessionLocal) -> dict:
    db = session_factory()
    try:
        ids = open_issue_ids(db, limit=limit, issue_id=issue_id)
        print(f"Open reconciliation issues: {len(ids)}")
        summary = {"found": len(ids), "resolved": 0, "failed": 0}
        for iid in ids:
            issue = db.get(ReconciliationIssue, iid)
            print(f"  issue={iid} txn={issue.transaction_id} owner={issue.owner_id} amount={issue.amount}")
            if dry_run:
                continue
            try:
                retry_reconciliation_issue(db, iid)
                summary["resolved"] += 1
                print("   -> credited, resolved")
            except SettlementError as e:
                summary["failed"] += 1
                print(f"   -> {e.code}: {e}")
        return summary
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    ap = argparse.ArgumentParser(description="Retry wallet credits for open reconciliation issues")
    ap.add_argument("--dry-run", action="store_true", help="list open issues without crediting")
    ap.add_argument("--limit", type=int, default=None, help="max issues to process")
    ap.add_argument("--issue", type=int, default=None, help="only this issue id")
    args = ap.parse_args()
    create_db()
    result = run(dry_run=args.dry_run, limit=args.limit, issue_id=args.issue)
    print("Done:", result)
