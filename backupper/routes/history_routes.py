"""
Run history routes - View backup run history.
"""

from flask import Blueprint, jsonify, request
from datetime import timedelta

from backupper.backup.result import Status, utcnow
from backupper.models import RunRecord


bp = Blueprint('history', __name__, url_prefix='/api/history')


@bp.route('/', methods=['GET'])
def list_history():
    """
    Get run history with filtering and pagination.

    Query params:
        - status: Filter by status (success/warning/failure)
        - trigger: Filter by trigger name
        - days: Only show runs from last N days
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with history records and metadata
    """
    # Parse query parameters
    status_filter = request.args.get('status')
    trigger_filter = request.args.get('trigger')
    days_filter = request.args.get('days', type=int)
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    # Enforce limits
    if limit > 200:
        limit = 200
    if limit < 1:
        limit = 50
    if offset < 0:
        offset = 0

    # Build query
    query = RunRecord.query

    # Apply filters
    if status_filter:
        if status_filter not in [status.value for status in Status]:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(RunRecord.status == status_filter)

    if trigger_filter:
        query = query.filter(RunRecord.trigger == trigger_filter)

    if days_filter and days_filter > 0:
        cutoff_date = utcnow() - timedelta(days=days_filter)
        query = query.filter(RunRecord.started_at >= cutoff_date)

    # Get total count before pagination
    total_count = query.count()

    # Apply pagination and ordering
    records = query.order_by(
        RunRecord.started_at.desc(), RunRecord.id.desc()
    ).limit(limit).offset(offset).all()

    return jsonify({
        'records': [record.to_dict() for record in records],
        'total': total_count,
        'limit': limit,
        'offset': offset
    })


@bp.route('/<int:record_id>', methods=['GET'])
def get_history_detail(record_id):
    """
    Get detailed information for a specific run, including logs.

    Args:
        record_id: Run history record ID
    """
    record = RunRecord.query.get_or_404(record_id)
    return jsonify(record.to_dict(include_logs=True))
