"""Family-scoped chat session store backed by a DynamoDB table.

Handles:
- Point reads/writes/deletes of chat messages
- Prefix queries that follow continuation cursors to the last page
- Bulk session deletes in batches of at most BATCH_SIZE keys
- Turn deletes (user message plus its paired assistant reply)

Every botocore failure aborts the whole operation and surfaces as StoreError.
"""
import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings
from app.core import keys
from app.core.errors import NotFoundError, StoreError
from app.models.chat import ChatMessage

logger = logging.getLogger(__name__)

# DynamoDB BatchWriteItem accepts at most 25 requests per call
BATCH_SIZE = 25

_PREFIX_CONDITION = "#pk = :pk AND begins_with(#sk, :sk)"
_KEY_NAMES = {"#pk": "pk", "#sk": "sk"}


def create_table_resource(settings: Settings) -> Any:
    """Build the boto3 Table once at startup."""
    resource = boto3.resource(
        "dynamodb",
        region_name=settings.AWS_REGION,
        endpoint_url=settings.DYNAMODB_ENDPOINT_URL,
    )
    return resource.Table(settings.DYNAMODB_TABLE)


class SessionStore:
    """
    Store client for chat messages.

    The table is injected so tests can pass an in-memory fake. The boto3
    resource it wraps is shared across requests.
    """

    def __init__(self, table: Any):
        """Initialize store with a DynamoDB Table (or compatible fake)."""
        self.table = table

    def put(self, message: ChatMessage) -> None:
        """
        Write a single message.

        A write to an existing key overwrites it.
        """
        try:
            self.table.put_item(Item=message.to_item())
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"put_item failed for {message.sort_key}") from e

    def put_turn(self, user_message: ChatMessage, assistant_message: ChatMessage) -> None:
        """
        Write both messages of a turn, or neither.

        If the reply cannot be written the user message is removed again
        before the error propagates.
        """
        self.put(user_message)
        try:
            self.put(assistant_message)
        except StoreError:
            logger.error(
                f"Reply write failed, removing user message: family={user_message.family_id}, "
                f"sk={user_message.sort_key}"
            )
            self.delete_point(user_message.family_id, user_message.sort_key)
            raise

    def get_item(self, family_id: str, sort_key: str) -> Optional[dict[str, Any]]:
        """Point read. Returns None if the item does not exist."""
        try:
            result = self.table.get_item(
                Key={"pk": keys.partition_key(family_id), "sk": sort_key}
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"get_item failed for {sort_key}") from e
        return result.get("Item")

    def get_user_profile(self, family_id: str, user_id: str) -> Optional[dict[str, Any]]:
        """Family-member item (username, role, birthDate, ...)."""
        _, sort_key = keys.user_profile_key(family_id, user_id)
        return self.get_item(family_id, sort_key)

    def get_by_prefix(
        self,
        family_id: str,
        prefix: str,
        projection: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Return every item whose sort key starts with prefix.

        Follows LastEvaluatedKey until the store reports no further page.
        Items come back in ascending sort-key order.

        Args:
            family_id: Partition to query
            prefix: Sort-key prefix
            projection: Optional ProjectionExpression (attribute names only)

        Returns:
            Concatenation of all pages
        """
        query_args: dict[str, Any] = {
            "KeyConditionExpression": _PREFIX_CONDITION,
            "ExpressionAttributeNames": dict(_KEY_NAMES),
            "ExpressionAttributeValues": {
                ":pk": keys.partition_key(family_id),
                ":sk": prefix,
            },
        }
        if projection:
            query_args["ProjectionExpression"] = projection

        items: list[dict[str, Any]] = []
        pages = 0
        start_key: Optional[dict[str, Any]] = None

        while True:
            if start_key is not None:
                query_args["ExclusiveStartKey"] = start_key
            try:
                result = self.table.query(**query_args)
            except (BotoCoreError, ClientError) as e:
                raise StoreError(f"query failed for prefix {prefix} on page {pages + 1}") from e

            pages += 1
            items.extend(result.get("Items", []))
            start_key = result.get("LastEvaluatedKey")
            if not start_key:
                break

        logger.debug(f"Prefix query: family={family_id}, prefix={prefix}, pages={pages}, items={len(items)}")
        return items

    def list_messages(self, family_id: str, user_id: str, session_id: str) -> list[ChatMessage]:
        """All messages of one session, oldest first."""
        items = self.get_by_prefix(family_id, keys.session_prefix(user_id, session_id))
        return [ChatMessage.from_item(item, user_id) for item in items]

    def list_sessions(self, family_id: str, user_id: str) -> list[str]:
        """Distinct session ids of a user, in sort-key order."""
        items = self.get_by_prefix(family_id, keys.user_prefix(user_id), projection="#pk, #sk")
        sessions: list[str] = []
        seen: set[str] = set()
        for item in items:
            try:
                session_id = keys.session_id_from_sort_key(user_id, item["sk"])
            except ValueError:
                continue
            if session_id not in seen:
                seen.add(session_id)
                sessions.append(session_id)
        return sessions

    def delete_all(self, family_id: str, prefix: str) -> int:
        """
        Delete every item under a prefix.

        The complete key list is materialized first, then deleted in batches
        of BATCH_SIZE.

        Returns:
            Number of items deleted

        Raises:
            NotFoundError: If nothing matches the prefix
            StoreError: On any store failure, including unprocessed items
        """
        key_items = self.get_by_prefix(family_id, prefix, projection="#pk, #sk")
        if not key_items:
            raise NotFoundError(f"No items under prefix {prefix}")

        delete_keys = [{"pk": item["pk"], "sk": item["sk"]} for item in key_items]
        for start in range(0, len(delete_keys), BATCH_SIZE):
            self._batch_delete(delete_keys[start:start + BATCH_SIZE])

        logger.info(f"Bulk delete: family={family_id}, prefix={prefix}, deleted={len(delete_keys)}")
        return len(delete_keys)

    def delete_point(self, family_id: str, sort_key: str) -> None:
        """Delete one item. Deleting a missing key is not an error."""
        try:
            self.table.delete_item(Key={"pk": keys.partition_key(family_id), "sk": sort_key})
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"delete_item failed for {sort_key}") from e

    def delete_turn(self, family_id: str, user_id: str, session_id: str, timestamp: str) -> int:
        """
        Delete the user message at timestamp and the assistant reply of that turn.

        The reply is found by the shared turnId. Messages written without a
        turnId fall back to the assistant slot at timestamp + 1s.

        Only items that exist are deleted and counted.

        Returns:
            Number of messages deleted: 0, 1 or 2
        """
        user_sk = keys.message_sort_key(user_id, session_id, timestamp)
        user_item = self.get_item(family_id, user_sk)

        partner_sk: Optional[str] = None
        turn_id = (user_item or {}).get("turnId")
        if turn_id:
            session_items = self.get_by_prefix(
                family_id,
                keys.session_prefix(user_id, session_id),
                projection="#pk, #sk, turnId",
            )
            for item in session_items:
                if item.get("turnId") == turn_id and item["sk"] != user_sk:
                    partner_sk = item["sk"]
                    break
        else:
            legacy_sk = keys.message_sort_key(
                user_id, session_id, keys.paired_timestamp(timestamp)
            )
            if self.get_item(family_id, legacy_sk):
                partner_sk = legacy_sk

        targets = [user_sk] if user_item else []
        if partner_sk:
            targets.append(partner_sk)
        for sort_key in targets:
            self.delete_point(family_id, sort_key)
        deleted = len(targets)

        logger.info(
            f"Turn deleted: family={family_id}, user={user_id}, session={session_id}, "
            f"timestamp={timestamp}, deleted={deleted}"
        )
        return deleted

    def _batch_delete(self, batch: list[dict[str, str]]) -> None:
        request_items = {
            self.table.name: [{"DeleteRequest": {"Key": key}} for key in batch]
        }
        try:
            result = self.table.meta.client.batch_write_item(RequestItems=request_items)
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"batch_write_item failed for {len(batch)} keys") from e

        unprocessed = result.get("UnprocessedItems") or {}
        if any(unprocessed.values()):
            raise StoreError(f"batch_write_item left unprocessed items: {unprocessed}")
