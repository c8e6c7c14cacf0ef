"""
Document Store Client
Firestore access for the sync core: collection watches, point reads, full and windowed reads.

SDK values are converted into tagged FieldValues at this boundary
(DocumentReference -> path string, GeoPoint -> nested lat/lng, timestamps
-> Timestamp) so nothing downstream depends on SDK types.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, List, Optional

import structlog
from google.api_core.exceptions import GoogleAPICallError

from storesync.exceptions import ConfigurationError, DocumentStoreError
from storesync.models.field_values import ChangeEvent, ChangeType, SourceDocument

logger = structlog.get_logger(__name__)

ChangeHandler = Callable[[str, List[ChangeEvent]], None]
ErrorHandler = Callable[[str, BaseException], None]


class Subscription(ABC):
    """Handle for one live collection watch."""

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivering changes. Idempotent."""


class DocumentStore(ABC):
    """Document store operations the sync core depends on."""

    @abstractmethod
    def watch(self, collection: str, on_changes: ChangeHandler, on_error: ErrorHandler) -> Subscription:
        """Open a continuous watch; on_changes receives events in delivery order."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[SourceDocument]:
        """Point read; None when the document does not exist."""

    @abstractmethod
    def list_all(self, collection: str) -> List[SourceDocument]:
        """Read every document in a collection."""

    @abstractmethod
    def list_window(self, collection: str, field: str, start: datetime, end: datetime) -> List[SourceDocument]:
        """Read documents whose field lies in [start, end]."""


_CHANGE_TYPES = {
    "ADDED": ChangeType.ADDED,
    "MODIFIED": ChangeType.MODIFIED,
    "REMOVED": ChangeType.REMOVED,
}


def _sdk_to_plain(value: Any) -> Any:
    from google.cloud.firestore_v1 import DocumentReference, GeoPoint

    if isinstance(value, DocumentReference):
        return value.path
    if isinstance(value, GeoPoint):
        return {"latitude": value.latitude, "longitude": value.longitude}
    if isinstance(value, dict):
        return {k: _sdk_to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sdk_to_plain(v) for v in value]
    return value


def snapshot_to_document(snapshot) -> SourceDocument:
    """Convert a Firestore DocumentSnapshot into a SourceDocument."""
    return SourceDocument.from_raw(snapshot.id, _sdk_to_plain(snapshot.to_dict() or {}))


class _FirestoreSubscription(Subscription):
    def __init__(self, collection: str, watch):
        self.collection = collection
        self._watch = watch
        self._closed = False

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._watch.unsubscribe()
        logger.info("watch_unsubscribed", collection=self.collection)


class FirestoreDocumentStore(DocumentStore):
    """
    DocumentStore over the firebase_admin Firestore client.

    Each watch runs on the SDK's own consumer thread, which delivers that
    collection's snapshots one at a time and in order.
    """

    def __init__(self, client):
        """
        Initialize document store.

        Args:
            client: firebase_admin.firestore client created once at process start
        """
        self.client = client

    def watch(self, collection: str, on_changes: ChangeHandler, on_error: ErrorHandler) -> Subscription:
        def _on_snapshot(col_snapshot, changes, read_time):
            try:
                events = [
                    ChangeEvent(
                        change_type=_CHANGE_TYPES[change.type.name],
                        document=snapshot_to_document(change.document),
                    )
                    for change in changes
                ]
            except Exception as e:
                on_error(collection, e)
                return
            on_changes(collection, events)

        try:
            watch = self.client.collection(collection).on_snapshot(_on_snapshot)
        except Exception as e:
            raise DocumentStoreError(f"Failed to watch collection '{collection}': {e}", table=collection) from e

        logger.info("watch_subscribed", collection=collection)
        return _FirestoreSubscription(collection, watch)

    def get(self, collection: str, doc_id: str) -> Optional[SourceDocument]:
        try:
            snapshot = self.client.collection(collection).document(doc_id).get()
        except GoogleAPICallError as e:
            raise DocumentStoreError(f"Failed to read {collection}/{doc_id}: {e}", table=collection, record_id=doc_id) from e
        if not snapshot.exists:
            return None
        return snapshot_to_document(snapshot)

    def list_all(self, collection: str) -> List[SourceDocument]:
        try:
            return [snapshot_to_document(s) for s in self.client.collection(collection).stream()]
        except GoogleAPICallError as e:
            raise DocumentStoreError(f"Failed to read collection '{collection}': {e}", table=collection) from e

    def list_window(self, collection: str, field: str, start: datetime, end: datetime) -> List[SourceDocument]:
        from google.cloud.firestore_v1 import FieldFilter

        query = (
            self.client.collection(collection)
            .where(filter=FieldFilter(field, ">=", start))
            .where(filter=FieldFilter(field, "<=", end))
        )
        try:
            return [snapshot_to_document(s) for s in query.stream()]
        except GoogleAPICallError as e:
            raise DocumentStoreError(f"Failed to read collection '{collection}' window: {e}", table=collection) from e


def create_firestore_client(
    credentials_path: Optional[str] = None,
    project_id: Optional[str] = None,
    app_name: Optional[str] = None,
):
    """
    Initialize firebase_admin and return a Firestore client.

    Uses the service-account file when given, otherwise application
    default credentials (GOOGLE_APPLICATION_CREDENTIALS).

    Raises:
        ConfigurationError: if credentials cannot be loaded
    """
    import firebase_admin
    from firebase_admin import credentials, firestore

    options = {"projectId": project_id} if project_id else None
    name = app_name or "[DEFAULT]"

    try:
        app = firebase_admin.get_app(name)
    except ValueError:
        try:
            cred = (
                credentials.Certificate(credentials_path)
                if credentials_path
                else credentials.ApplicationDefault()
            )
            app = firebase_admin.initialize_app(cred, options=options, name=name)
        except (ValueError, IOError) as e:
            raise ConfigurationError(f"Firebase credentials could not be loaded: {e}") from e

    logger.info("firestore_client_ready", app=name, project_id=project_id)
    return firestore.client(app)


def build_document_store() -> FirestoreDocumentStore:
    """Construct the Firestore document store from settings."""
    from storesync.config import settings

    client = create_firestore_client(settings.firebase_credentials_path, settings.firebase_project_id)
    return FirestoreDocumentStore(client)
