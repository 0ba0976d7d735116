"""
DynamoDB operations for leaderboards

- Definitions: PK = DEFINITION#LEADERBOARD, SK = {leaderboardId}
- Snapshots:   PK = LEADERBOARD#{leaderboardId}, SK = SNAPSHOT

A snapshot is one item holding the whole ranked list, so replacing it is a
single atomic put and readers never see a half-written ranking.
"""
import logging
from typing import List, Optional

from progress_engine import dynamo
from progress_engine.schemas import LeaderboardDefinition, LeaderboardSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_SK = "SNAPSHOT"


def build_snapshot_pk(leaderboard_id: str) -> str:
    return f"LEADERBOARD#{leaderboard_id}"


def list_definitions() -> List[LeaderboardDefinition]:
    try:
        items = dynamo.query_partition(dynamo.db_client.gamification_table, dynamo.LEADERBOARD_DEFINITION_PK)
        return [LeaderboardDefinition(**item) for item in items]
    except Exception as e:
        logger.error(f"Error listing leaderboard definitions: {str(e)}")
        raise


def get_definition(leaderboard_id: str) -> Optional[LeaderboardDefinition]:
    response = dynamo.db_client.gamification_table.get_item(
        Key={'PK': dynamo.LEADERBOARD_DEFINITION_PK, 'SK': leaderboard_id}
    )
    if 'Item' not in response:
        return None
    return LeaderboardDefinition(**dynamo.python_dict(response['Item']))


def put_definition(definition: LeaderboardDefinition) -> LeaderboardDefinition:
    dynamo.db_client.gamification_table.put_item(
        Item=dynamo.dynamodb_dict({
            'PK': dynamo.LEADERBOARD_DEFINITION_PK,
            'SK': definition.id,
            **definition.model_dump(mode='json'),
        })
    )
    logger.info(f"Stored leaderboard definition {definition.id}")
    return definition


def get_snapshot(leaderboard_id: str) -> Optional[LeaderboardSnapshot]:
    response = dynamo.db_client.gamification_table.get_item(
        Key={'PK': build_snapshot_pk(leaderboard_id), 'SK': SNAPSHOT_SK}
    )
    if 'Item' not in response:
        return None
    return LeaderboardSnapshot(**dynamo.python_dict(response['Item']))


def replace_snapshot(snapshot: LeaderboardSnapshot) -> LeaderboardSnapshot:
    dynamo.db_client.gamification_table.put_item(
        Item=dynamo.dynamodb_dict({
            'PK': build_snapshot_pk(snapshot.leaderboardId),
            'SK': SNAPSHOT_SK,
            **snapshot.model_dump(mode='json'),
        })
    )
    return snapshot
