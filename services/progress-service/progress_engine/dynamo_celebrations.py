"""
DynamoDB operations for celebration records

- PK: USER#{userId}
- SK: CELEBRATION#{celebrationId}

Celebration ids are derived from the transition that produced them, so the
conditional insert makes every transition yield at most one record.
"""
import logging
from datetime import datetime
from typing import List, Optional

from progress_engine import dynamo
from progress_engine.schemas import CelebrationEvent

logger = logging.getLogger(__name__)

CELEBRATION_PREFIX = "CELEBRATION#"


def build_celebration_sk(celebration_id: str) -> str:
    return f"{CELEBRATION_PREFIX}{celebration_id}"


def create_celebration(celebration: CelebrationEvent) -> bool:
    """
    Insert a celebration if no record exists for the same transition.

    Returns:
        True if inserted, False if it was already recorded
    """
    item = {
        'PK': dynamo.user_pk(celebration.userId),
        'SK': build_celebration_sk(celebration.id),
        **celebration.model_dump(mode='json'),
    }
    created = dynamo.put_if_absent(dynamo.db_client.gamification_table, item)
    if not created:
        logger.info(f"Celebration {celebration.id} already recorded for user {celebration.userId}")
    return created


def get_celebration(user_id: str, celebration_id: str) -> Optional[CelebrationEvent]:
    response = dynamo.db_client.gamification_table.get_item(
        Key={'PK': dynamo.user_pk(user_id), 'SK': build_celebration_sk(celebration_id)}
    )
    if 'Item' not in response:
        return None
    return CelebrationEvent(**dynamo.python_dict(response['Item']))


def list_celebrations(user_id: str) -> List[CelebrationEvent]:
    try:
        items = dynamo.query_partition(
            dynamo.db_client.gamification_table,
            dynamo.user_pk(user_id),
            sk_prefix=CELEBRATION_PREFIX,
        )
        return [CelebrationEvent(**item) for item in items]
    except Exception as e:
        logger.error(f"Error listing celebrations for user {user_id}: {str(e)}")
        raise


def mark_shown(user_id: str, celebration_id: str, shown_at: datetime) -> Optional[CelebrationEvent]:
    """
    Flag a celebration as shown.

    Returns:
        Updated celebration, or None if it does not exist
    """
    try:
        response = dynamo.db_client.gamification_table.update_item(
            Key={'PK': dynamo.user_pk(user_id), 'SK': build_celebration_sk(celebration_id)},
            UpdateExpression='SET isShown = :shown, shownAt = :shown_at',
            ConditionExpression='attribute_exists(PK)',
            ExpressionAttributeValues={':shown': True, ':shown_at': shown_at.isoformat()},
            ReturnValues='ALL_NEW'
        )
    except dynamo.db_client.conditional_check_failed:
        return None
    return CelebrationEvent(**dynamo.python_dict(response['Attributes']))
