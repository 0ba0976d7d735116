"""
DynamoDB operations for the progress ledger

Table structure (append-only):
- PK: USER#{userId}
- SK: REC#{occurredAt ISO}#{recordId}

Records are written once with attribute_not_exists and never rewritten or
deleted. The only later write stamps processedAt once every stage of the
event has run. Sort keys are time ordered so history reads are a single query.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr

from progress_engine import dynamo
from progress_engine.exceptions import DuplicateEventError
from progress_engine.schemas import ProgressRecord

logger = logging.getLogger(__name__)

RECORD_PREFIX = "REC#"


def build_record_sk(occurred_at: datetime, record_id: str) -> str:
    return f"{RECORD_PREFIX}{occurred_at.isoformat()}#{record_id}"


def append_record(record: ProgressRecord) -> ProgressRecord:
    """
    Append a progress record.

    Raises:
        DuplicateEventError: a record with the same key (same eventId) already exists
    """
    item = {
        'PK': dynamo.user_pk(record.userId),
        'SK': build_record_sk(record.date, record.id),
        **record.model_dump(mode='json'),
    }

    if not dynamo.put_if_absent(dynamo.db_client.ledger_table, item):
        logger.info(f"Ledger record {record.id} for user {record.userId} already exists")
        raise DuplicateEventError(record.eventId or record.id)

    logger.debug(f"Appended ledger record {record.id} for user {record.userId}")
    return record


def get_record(user_id: str, occurred_at: datetime, record_id: str) -> Optional[ProgressRecord]:
    response = dynamo.db_client.ledger_table.get_item(
        Key={'PK': dynamo.user_pk(user_id), 'SK': build_record_sk(occurred_at, record_id)}
    )
    if 'Item' not in response:
        return None
    return ProgressRecord(**dynamo.python_dict(response['Item']))


def mark_processed(record: ProgressRecord, processed_at: datetime) -> ProgressRecord:
    """Stamp processedAt on an existing record; redeliveries of a stamped record are skipped"""
    dynamo.db_client.ledger_table.update_item(
        Key={'PK': dynamo.user_pk(record.userId), 'SK': build_record_sk(record.date, record.id)},
        UpdateExpression='SET processedAt = :processed_at',
        ConditionExpression='attribute_exists(PK)',
        ExpressionAttributeValues={':processed_at': processed_at.isoformat().replace('+00:00', 'Z')},
    )
    logger.debug(f"Ledger record {record.id} for user {record.userId} processed")
    return record.model_copy(update={'processedAt': processed_at})


def get_user_records(user_id: str, limit: Optional[int] = None, newest_first: bool = True) -> List[ProgressRecord]:
    """Query a user's ledger, newest first by default"""
    try:
        items = dynamo.query_partition(
            dynamo.db_client.ledger_table,
            dynamo.user_pk(user_id),
            sk_prefix=RECORD_PREFIX,
            newest_first=newest_first,
            limit=limit,
        )
        return [ProgressRecord(**item) for item in items]
    except Exception as e:
        logger.error(f"Error reading ledger for user {user_id}: {str(e)}")
        raise


def scan_records(since: Optional[datetime] = None, subject: Optional[str] = None,
                 grade: Optional[str] = None) -> List[ProgressRecord]:
    """
    Scan the whole ledger for aggregation.

    Args:
        since: Only records dated at or after this instant
        subject: Only records of this subject
        grade: Only records of this grade
    """
    conditions = []
    if since is not None:
        conditions.append(Attr('date').gte(since.isoformat().replace('+00:00', 'Z')))
    if subject:
        conditions.append(Attr('subject').eq(subject))
    if grade:
        conditions.append(Attr('grade').eq(grade))

    filter_expression = None
    for condition in conditions:
        filter_expression = condition if filter_expression is None else filter_expression & condition

    try:
        items: List[Dict[str, Any]] = dynamo.scan_all(dynamo.db_client.ledger_table, filter_expression)
        return [ProgressRecord(**item) for item in items]
    except Exception as e:
        logger.error(f"Error scanning ledger: {str(e)}")
        raise
