"""
Firestore Service Layer

This module provides a service layer for interacting with Firestore.
It uses the Firebase Admin SDK and provides type-safe operations
using the Pydantic models defined in app.models.
"""

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

import firebase_admin
from firebase_admin import firestore, initialize_app
from google.api_core.exceptions import AlreadyExists
from google.cloud.firestore import Client, DocumentReference, Transaction, transactional

from app.models.shared import FirestoreBaseModel
from app.utils.dates import utcnow

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Type variable for generic model operations
T = TypeVar("T", bound=FirestoreBaseModel)

# Receives the current document data (None if missing) and returns the
# fields to write, or None to leave the document untouched
Mutation = Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]


class FirestoreService:
    """
    Service class for Firestore operations with type safety and Pydantic integration.
    """

    def __init__(self, database_name: str = "(default)"):
        """
        Initialize the Firestore service.

        Args:
            database_name: Name of the Firestore database to connect to
        """
        self.database_name = database_name
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        """Get or create the Firestore client."""
        if self._client is None:
            # Initialize Firebase Admin SDK if not already initialized
            try:
                app = initialize_app()
            except ValueError:
                # App already exists, get it
                app = firebase_admin.get_app()

            # Get Firestore client for specified database
            self._client = firestore.client(app, database=self.database_name)

        return self._client

    def get_collection_ref(self, collection_name: str):
        """Get a reference to a Firestore collection."""
        return self.client.collection(collection_name)

    def get_document_ref(
        self, collection_name: str, document_id: str
    ) -> DocumentReference:
        """Get a reference to a specific document."""
        return self.client.collection(collection_name).document(document_id)

    @staticmethod
    def _to_model(doc, model_class: Optional[Type[T]]):
        data = doc.to_dict()
        data["id"] = doc.id  # Add document ID to data
        return model_class(**data) if model_class else data

    # Generic CRUD operations
    async def create_document(
        self,
        collection_name: str,
        document_data: Dict[str, Any],
        document_id: Optional[str] = None,
    ) -> str:
        """
        Create a new document in the specified collection.

        Args:
            collection_name: Name of the collection
            document_data: Data to store in the document
            document_id: Optional document ID, will generate UUID if not provided

        Returns:
            The document ID of the created document
        """
        try:
            # Generate document ID if not provided
            if document_id is None:
                document_id = str(uuid.uuid4())

            # Add timestamps
            now = utcnow()
            document_data.setdefault("created_at", now)
            document_data.setdefault("updated_at", now)

            # Create the document
            doc_ref = self.get_document_ref(collection_name, document_id)
            doc_ref.set(document_data)

            logger.info(f"Created document {document_id} in {collection_name}")
            return document_id

        except Exception as e:
            logger.error(f"Failed to create document in {collection_name}: {str(e)}")
            raise

    async def create_document_if_absent(
        self,
        collection_name: str,
        document_id: str,
        document_data: Dict[str, Any],
    ) -> bool:
        """
        Create a document only if no document with that ID exists.

        Returns:
            True if the document was created, False if it already existed
        """
        now = utcnow()
        document_data.setdefault("created_at", now)
        document_data.setdefault("updated_at", now)

        try:
            self.get_document_ref(collection_name, document_id).create(document_data)
        except AlreadyExists:
            logger.info(f"Document {document_id} already exists in {collection_name}")
            return False

        logger.info(f"Created document {document_id} in {collection_name}")
        return True

    async def get_document(
        self,
        collection_name: str,
        document_id: str,
        model_class: Optional[Type[T]] = None,
    ) -> Optional[T]:
        """
        Get a document by ID.

        Args:
            collection_name: Name of the collection
            document_id: ID of the document to retrieve
            model_class: Optional Pydantic model class to validate the data

        Returns:
            Document data as Pydantic model instance or None if not found
        """
        try:
            doc = self.get_document_ref(collection_name, document_id).get()

            if not doc.exists:
                return None

            return self._to_model(doc, model_class)

        except Exception as e:
            logger.error(
                f"Failed to get document {document_id} from {collection_name}: {str(e)}"
            )
            raise

    async def update_document(
        self, collection_name: str, document_id: str, update_data: Dict[str, Any]
    ) -> bool:
        """
        Update a document.

        Args:
            collection_name: Name of the collection
            document_id: ID of the document to update
            update_data: Data to update

        Returns:
            True if successful
        """
        try:
            # Add update timestamp
            update_data["updated_at"] = utcnow()

            doc_ref = self.get_document_ref(collection_name, document_id)
            doc_ref.update(update_data)

            logger.info(f"Updated document {document_id} in {collection_name}")
            return True

        except Exception as e:
            logger.error(
                f"Failed to update document {document_id} in {collection_name}: {str(e)}"
            )
            raise

    async def update_in_transaction(
        self,
        collection_name: str,
        document_id: str,
        mutation: Mutation,
    ) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """
        Read, decide and write a document atomically.

        The mutation runs inside a Firestore transaction and may be retried
        on contention, so it must be free of side effects. Exceptions raised
        by the mutation abort the transaction and propagate to the caller.

        Args:
            collection_name: Name of the collection
            document_id: ID of the document to update
            mutation: Callable receiving the current data and returning the changes

        Returns:
            Tuple of (data before the write, changes written or None)
        """
        doc_ref = self.get_document_ref(collection_name, document_id)

        @transactional
        def _run(transaction: Transaction):
            snapshot = doc_ref.get(transaction=transaction)
            current = snapshot.to_dict() if snapshot.exists else None
            changes = mutation(current)
            if changes:
                changes["updated_at"] = utcnow()
                transaction.update(doc_ref, changes)
            return current, changes

        current, changes = _run(self.client.transaction())

        if changes:
            logger.info(
                f"Transactionally updated document {document_id} in {collection_name}"
            )
        return current, changes

    async def delete_document(self, collection_name: str, document_id: str) -> bool:
        """
        Delete a document.

        Args:
            collection_name: Name of the collection
            document_id: ID of the document to delete

        Returns:
            True if successful
        """
        try:
            self.get_document_ref(collection_name, document_id).delete()

            logger.info(f"Deleted document {document_id} from {collection_name}")
            return True

        except Exception as e:
            logger.error(
                f"Failed to delete document {document_id} from {collection_name}: {str(e)}"
            )
            raise

    async def query_collection(
        self,
        collection_name: str,
        filters: Optional[List[tuple]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        model_class: Optional[Type[T]] = None,
    ) -> List[T]:
        """
        Query a collection with filters, ordering, and pagination.

        Args:
            collection_name: Name of the collection to query
            filters: List of filter tuples (field, operator, value)
            order_by: Field to order by
            limit: Maximum number of results
            offset: Number of results to skip
            model_class: Optional Pydantic model class

        Returns:
            List of documents as model instances
        """
        try:
            query = self.get_collection_ref(collection_name)

            # Apply filters
            if filters:
                for field, operator, value in filters:
                    query = query.where(field, operator, value)

            # Apply ordering
            if order_by:
                query = query.order_by(order_by)

            # Apply pagination
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)

            return [self._to_model(doc, model_class) for doc in query.stream()]

        except Exception as e:
            logger.error(f"Failed to query collection {collection_name}: {str(e)}")
            raise


# Global service instance
_firestore_service = None


def get_firestore_service(database_name: str = "(default)") -> FirestoreService:
    """
    Get a singleton Firestore service instance.

    Args:
        database_name: Name of the Firestore database

    Returns:
        FirestoreService instance
    """
    global _firestore_service
    if _firestore_service is None:
        _firestore_service = FirestoreService(database_name)
    return _firestore_service
