import json
from datetime import datetime, timedelta

from flask import Blueprint, g, jsonify, request
from sqlalchemy import func

from models import db
from models.activity_log import ActivityLog
from utils.auth_context import login_required

activity_bp = Blueprint("activity", __name__, url_prefix="/user")


def _parse_dt(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _row(r: ActivityLog) -> dict:
    return {
        "id": r.id,
        "action": r.action,
        "category": r.category,
        "description": r.description,
        "ip_address": r.ip_address,
        "user_agent": r.user_agent,
        "metadata": json.loads(r.metadata_json) if r.metadata_json else None,
        "success": r.success,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


@activity_bp.get("/activity-logs")
@login_required
def list_activity_logs():
    page = max(request.args.get("page", type=int) or 1, 1)
    limit = request.args.get("limit", type=int) or 20
    limit = max(1, min(limit, 100))

    q = ActivityLog.query.filter(ActivityLog.user_id == g.user.id)

    category = request.args.get("category")
    if category:
        q = q.filter(ActivityLog.category == category)

    action = request.args.get("action")
    if action:
        q = q.filter(ActivityLog.action == action)

    start = _parse_dt(request.args.get("startDate"))
    if start:
        q = q.filter(ActivityLog.created_at >= start)

    end = _parse_dt(request.args.get("endDate"))
    if end:
        q = q.filter(ActivityLog.created_at <= end)

    success = request.args.get("success")
    if success is not None:
        q = q.filter(ActivityLog.success.is_(success.lower() == "true"))

    total = q.count()
    total_pages = -(-total // limit)
    rows = (
        q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return jsonify(
        logs=[_row(r) for r in rows],
        pagination={
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    ), 200


@activity_bp.get("/activity-summary")
@login_required
def activity_summary():
    days = request.args.get("days", type=int) or 30
    days = max(1, min(days, 365))
    since = datetime.utcnow() - timedelta(days=days)

    mine = (ActivityLog.user_id == g.user.id, ActivityLog.created_at >= since)

    summary = (
        db.session.query(
            ActivityLog.category,
            ActivityLog.action,
            ActivityLog.success,
            func.count(ActivityLog.id),
        )
        .filter(*mine)
        .group_by(ActivityLog.category, ActivityLog.action, ActivityLog.success)
        .all()
    )

    failures = (
        ActivityLog.query
        .filter(*mine, ActivityLog.success.is_(False))
        .order_by(ActivityLog.created_at.desc())
        .limit(10)
        .all()
    )

    unique_ips = (
        db.session.query(func.count(func.distinct(ActivityLog.ip_address)))
        .filter(*mine, ActivityLog.ip_address.isnot(None))
        .scalar()
    )

    return jsonify(
        summary=[
            {"category": c, "action": a, "success": s, "count": n}
            for c, a, s, n in summary
        ],
        recentFailures=[
            {
                "action": r.action,
                "description": r.description,
                "ip_address": r.ip_address,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in failures
        ],
        uniqueIPCount=unique_ips or 0,
        period=f"{days} days",
    ), 200
