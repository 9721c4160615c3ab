"""
MongoDB database utilities for async operations.
Handles connection, indexing, snapshot rotation and subscriber storage.
"""

from typing import List, Optional, Dict, Any
from datetime import datetime, timedelta
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError, ConnectionFailure, DuplicateKeyError
import structlog

from .models import AlumniRecord, CompanyRecord, MatchedAlumnus, Subscriber

logger = structlog.get_logger(__name__)

DUPLICATE_KEY_ERROR = 11000
CYCLE_LEASE_ID = "snapshot_cycle"


class MongoDBManager:
    """
    Async MongoDB manager for the alumni tracker collections.

    The previous-snapshot collection is written only by rotate_snapshot().
    """

    def __init__(
        self,
        connection_url: str,
        database_name: str,
        alumni_collection: str = "alumnis",
        previous_alumni_collection: str = "prevalumnis",
        company_collection: str = "ezens",
        subscriber_collection: str = "subscribers",
        lock_collection: str = "cycle_locks"
    ):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            alumni_collection: Current snapshot collection
            previous_alumni_collection: Previous snapshot (baseline) collection
            company_collection: EquityZen company directory collection
            subscriber_collection: Subscriber collection
            lock_collection: Cross-process cycle lease collection
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.alumni_collection_name = alumni_collection
        self.previous_alumni_collection_name = previous_alumni_collection
        self.company_collection_name = company_collection
        self.subscriber_collection_name = subscriber_collection
        self.lock_collection_name = lock_collection
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None

    @property
    def alumni(self) -> AsyncIOMotorCollection:
        return self.database[self.alumni_collection_name]

    @property
    def previous_alumni(self) -> AsyncIOMotorCollection:
        return self.database[self.previous_alumni_collection_name]

    @property
    def companies(self) -> AsyncIOMotorCollection:
        return self.database[self.company_collection_name]

    @property
    def subscribers(self) -> AsyncIOMotorCollection:
        return self.database[self.subscriber_collection_name]

    @property
    def locks(self) -> AsyncIOMotorCollection:
        return self.database[self.lock_collection_name]

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self) -> None:
        """Create indexes for identity lookups."""
        try:
            # Records without an identity key are allowed to repeat
            await self.alumni.create_index(
                "url",
                unique=True,
                partialFilterExpression={"url": {"$type": "string"}}
            )
            await self.alumni.create_index("company")
            await self.previous_alumni.create_index("url")
            await self.companies.create_index("name")
            await self.subscribers.create_index("email", unique=True)

            logger.info("Successfully created MongoDB indexes")

        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    # Snapshots

    async def get_current_alumni(self) -> List[AlumniRecord]:
        """Load the current snapshot in stored order."""
        return await self._load_records(self.alumni)

    async def get_previous_alumni(self) -> List[AlumniRecord]:
        """Load the previous snapshot (diff baseline)."""
        return await self._load_records(self.previous_alumni)

    async def _load_records(self, collection: AsyncIOMotorCollection) -> List[AlumniRecord]:
        try:
            records = []
            async for document in collection.find({}, {"_id": 0}):
                # Stored malformed documents degrade to flagged records
                records.append(AlumniRecord.from_source(document))
            logger.debug("Loaded alumni snapshot", collection=collection.name, count=len(records))
            return records

        except Exception as e:
            logger.error("Failed to load alumni snapshot", collection=collection.name, error=str(e))
            raise

    async def replace_current_alumni(self, records: List[AlumniRecord]) -> int:
        """
        Replace the current snapshot with freshly scraped records.

        Returns:
            Number of records inserted
        """
        try:
            await self.alumni.delete_many({})
            if not records:
                return 0

            try:
                result = await self.alumni.insert_many(
                    [record.to_document() for record in records],
                    ordered=False
                )
                inserted = len(result.inserted_ids)
            except BulkWriteError as e:
                write_errors = e.details.get("writeErrors", [])
                if any(error.get("code") != DUPLICATE_KEY_ERROR for error in write_errors):
                    raise
                inserted = e.details.get("nInserted", 0)
                logger.warning(
                    "Duplicate alumni identity keys skipped",
                    total=len(records),
                    inserted=inserted
                )

            logger.info("Current alumni snapshot replaced", count=inserted)
            return inserted

        except Exception as e:
            logger.error("Failed to replace current alumni", error=str(e))
            raise

    async def rotate_snapshot(self) -> int:
        """
        Replace the previous snapshot with a full copy of the current one.

        The copy is staged in a side collection and renamed over the target,
        so readers never observe a partially written baseline.

        Returns:
            Number of records in the new baseline
        """
        staging_name = f"{self.previous_alumni_collection_name}_staging"
        staging = self.database[staging_name]

        try:
            await staging.drop()

            documents = await self.alumni.find({}, {"_id": 0}).to_list(length=None)
            if documents:
                await staging.insert_many(documents)
            else:
                await self.database.create_collection(staging_name)
            await staging.create_index("url")

            await staging.rename(self.previous_alumni_collection_name, dropTarget=True)

            logger.info("Alumni snapshot rotated", count=len(documents))
            return len(documents)

        except Exception as e:
            logger.error("Failed to rotate alumni snapshot", error=str(e))
            raise

    # Cycle lease

    async def acquire_cycle_lease(self, owner: str, ttl_seconds: int) -> bool:
        """
        Take the lease that allows one snapshot cycle across all processes.

        An expired lease is taken over, so a crashed holder blocks cycles
        for at most ttl_seconds.

        Returns:
            False if another owner holds an unexpired lease
        """
        now = datetime.utcnow()
        try:
            await self.locks.find_one_and_update(
                {
                    "_id": CYCLE_LEASE_ID,
                    "$or": [{"owner": None}, {"expires_at": {"$lte": now}}],
                },
                {
                    "$set": {
                        "owner": owner,
                        "acquired_at": now,
                        "expires_at": now + timedelta(seconds=ttl_seconds),
                    }
                },
                upsert=True
            )
            logger.debug("Cycle lease acquired", owner=owner)
            return True

        except DuplicateKeyError:
            # Lease document exists and is held by someone else
            holder = await self.locks.find_one({"_id": CYCLE_LEASE_ID})
            logger.info(
                "Cycle lease held elsewhere",
                owner=owner,
                holder=holder.get("owner") if holder else None
            )
            return False

        except Exception as e:
            logger.error("Failed to acquire cycle lease", owner=owner, error=str(e))
            raise

    async def release_cycle_lease(self, owner: str) -> bool:
        """
        Give up the lease if this owner still holds it.

        Returns:
            False if the lease had already passed to another owner
        """
        try:
            result = await self.locks.update_one(
                {"_id": CYCLE_LEASE_ID, "owner": owner},
                {"$set": {"owner": None, "expires_at": None}}
            )
            return result.matched_count > 0

        except Exception as e:
            logger.error("Failed to release cycle lease", owner=owner, error=str(e))
            raise

    # Companies

    async def get_companies(self) -> List[CompanyRecord]:
        """Load the company directory, highest total funding first."""
        try:
            companies = []
            async for document in self.companies.find({}, {"_id": 0}).sort("name", 1):
                companies.append(CompanyRecord.model_validate(document))
            # totalFunding is suffix-encoded text, so ordering happens here
            companies.sort(key=lambda company: company.funding_value, reverse=True)
            return companies

        except Exception as e:
            logger.error("Failed to load companies", error=str(e))
            raise

    async def replace_unfavorited_companies(self, companies: List[CompanyRecord]) -> int:
        """
        Drop every non-favorite company and insert the freshly fetched ones.

        Returns:
            Number of companies inserted
        """
        try:
            result = await self.companies.delete_many({"favorite": False})
            logger.debug("Removed non-favorite companies", count=result.deleted_count)

            if not companies:
                return 0

            inserted = await self.companies.insert_many(
                [company.to_document() for company in companies]
            )
            logger.info("Company directory refreshed", count=len(inserted.inserted_ids))
            return len(inserted.inserted_ids)

        except Exception as e:
            logger.error("Failed to refresh company directory", error=str(e))
            raise

    async def set_company_alumni(self, name: str, alumni: List[MatchedAlumnus]) -> bool:
        """Store the matched alumni list of one company."""
        try:
            result = await self.companies.update_many(
                {"name": name},
                {"$set": {"alumnis": [a.model_dump() for a in alumni]}}
            )
            return result.matched_count > 0

        except Exception as e:
            logger.error("Failed to update company alumni", company=name, error=str(e))
            raise

    # Subscribers

    async def find_subscriber(self, email: str) -> Optional[Subscriber]:
        try:
            document = await self.subscribers.find_one({"email": email}, {"_id": 0})
            return Subscriber.model_validate(document) if document else None

        except Exception as e:
            logger.error("Failed to find subscriber", email=email, error=str(e))
            raise

    async def upsert_subscriber(self, email: str, name: Optional[str]) -> Subscriber:
        """Mark a subscriber active, creating the record when missing."""
        try:
            document = await self.subscribers.find_one_and_update(
                {"email": email},
                {
                    "$set": {"subscribed": True, "updated_at": datetime.utcnow()},
                    "$setOnInsert": {"name": name, "created_at": datetime.utcnow()},
                },
                upsert=True,
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER
            )
            return Subscriber.model_validate(document)

        except Exception as e:
            logger.error("Failed to upsert subscriber", email=email, error=str(e))
            raise

    async def deactivate_subscriber(self, email: str) -> bool:
        """
        Mark a subscriber inactive.

        Returns:
            False if no subscriber has this email
        """
        try:
            result = await self.subscribers.update_one(
                {"email": email},
                {"$set": {"subscribed": False, "updated_at": datetime.utcnow()}}
            )
            return result.matched_count > 0

        except Exception as e:
            logger.error("Failed to deactivate subscriber", email=email, error=str(e))
            raise

    async def count_subscribed(self) -> int:
        try:
            return await self.subscribers.count_documents({"subscribed": True})
        except Exception as e:
            logger.error("Failed to count subscribers", error=str(e))
            raise

    async def get_subscribed(self) -> List[Subscriber]:
        try:
            subscribers = []
            async for document in self.subscribers.find({"subscribed": True}, {"_id": 0}):
                subscribers.append(Subscriber.model_validate(document))
            return subscribers

        except Exception as e:
            logger.error("Failed to load subscribers", error=str(e))
            raise

    async def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics for monitoring."""
        try:
            return {
                "current_alumni": await self.alumni.estimated_document_count(),
                "previous_alumni": await self.previous_alumni.estimated_document_count(),
                "companies": await self.companies.estimated_document_count(),
                "active_subscribers": await self.count_subscribed(),
                "last_updated": datetime.utcnow().isoformat()
            }

        except Exception as e:
            logger.error("Failed to get database stats", error=str(e))
            raise
