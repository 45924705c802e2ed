"""Maps journal entries onto the remote per-owner folder tree."""

import json
import logging
import mimetypes
import os
from dataclasses import replace
from typing import Any, Dict, List

from shared.exceptions import MalformedEntryError, ObjectNotFoundError, RemoteStoreError
from shared.models import Attachment, Entry, RemotePayload, SyncState
from services.remote_store.s3_client import S3Client, folder_key

logger = logging.getLogger(__name__)

JOURNAL_FOLDER = "journal"
TRASH_FOLDER = ".trash"
ENTRY_PREFIX = "log_"
ENTRY_SUFFIX = ".json"


def entry_document_name(entry_id: str) -> str:
    return f"{ENTRY_PREFIX}{entry_id}{ENTRY_SUFFIX}"


def attachment_extension(original_name: str, mime_type: str) -> str:
    """
    Pick the file extension for an uploaded attachment.

    The original file name's extension wins, then a guess from the MIME
    type, then ``bin``.
    """
    _, ext = os.path.splitext(original_name or "")
    if ext and len(ext) > 1:
        return ext[1:].lower()

    guessed = mimetypes.guess_extension(mime_type or "")
    if guessed:
        return guessed.lstrip(".")

    return "bin"


def attachment_object_name(timestamp: int, attachment: Attachment) -> str:
    ext = attachment_extension(attachment.original_name, attachment.mime_type)
    return f"{timestamp}_{attachment.id}.{ext}"


class RemoteAdapter:
    """Reads and writes entries under ``<root>/journal/<owner>/<year>/<month>/<day>/``."""

    def __init__(self, s3_client: S3Client, root_prefix: str = "dailycraft"):
        """
        Initialize the remote adapter.

        Args:
            s3_client: Object-store client
            root_prefix: Root folder of the journal tree inside the bucket
        """
        self.s3 = s3_client
        self.root_prefix = root_prefix.strip("/")

    # Naming

    def _folder_chain(self, owner: str, date_key: str) -> List[str]:
        year, month, day = date_key.split("-")
        base = f"{self.root_prefix}/{JOURNAL_FOLDER}" if self.root_prefix else JOURNAL_FOLDER
        chain = [base]
        for part in (owner, year, month, day):
            chain.append(f"{chain[-1]}/{part}")
        return [folder_key(folder) for folder in chain]

    def owner_folder(self, owner: str) -> str:
        base = f"{self.root_prefix}/{JOURNAL_FOLDER}" if self.root_prefix else JOURNAL_FOLDER
        return folder_key(f"{base}/{owner}")

    def date_folder(self, owner: str, date_key: str) -> str:
        return self._folder_chain(owner, date_key)[-1]

    def entry_key(self, owner: str, date_key: str, entry_id: str) -> str:
        return f"{self.date_folder(owner, date_key)}{entry_document_name(entry_id)}"

    def trash_key(self, key: str) -> str:
        if self.root_prefix:
            return f"{self.root_prefix}/{TRASH_FOLDER}/{key}"
        return f"{TRASH_FOLDER}/{key}"

    # Operations

    async def ensure_path(self, owner: str, date_key: str) -> str:
        """
        Create the folder chain for a date if needed.

        Safe to call concurrently: losing a creation race resolves to the
        folder the other writer created.

        Returns:
            The date folder prefix
        """
        chain = self._folder_chain(owner, date_key)
        for folder in chain:
            if not await self.s3.folder_exists(folder):
                await self.s3.create_folder(folder)
        return chain[-1]

    async def _upload_attachment(
        self,
        folder: str,
        entry: Entry,
        attachment: Attachment
    ) -> Attachment:
        if attachment.is_uploaded:
            return attachment

        payload = attachment.payload

        key = f"{folder}{attachment_object_name(entry.created_at, attachment)}"
        logger.info(f"Uploading attachment {attachment.id} of entry {entry.id}")
        url = await self.s3.put_object(
            key,
            payload.data,
            content_type=attachment.mime_type or payload.mime_type
        )
        return replace(attachment, payload=RemotePayload(reference=url, remote_id=key))

    async def upload_entry(self, owner: str, entry: Entry) -> Entry:
        """
        Upload an entry and its inline attachments, then upsert its document.

        A failed attachment upload keeps its inline payload and does not
        abort the entry; it is retried on a later pass.

        Args:
            owner: Owner identity
            entry: Local entry to push

        Returns:
            The entry as persisted remotely, marked ``synced``

        Raises:
            RemoteStoreError: If the folder chain or the document cannot be written
        """
        logger.info(f"Starting upload of entry {entry.id} for {owner}")
        folder = await self.ensure_path(owner, entry.date_key)

        attachments = []
        for attachment in entry.attachments:
            try:
                attachments.append(await self._upload_attachment(folder, entry, attachment))
            except RemoteStoreError as e:
                logger.error(f"Attachment {attachment.id} of entry {entry.id} failed to upload: {e}")
                attachments.append(attachment)

        persisted = replace(entry, attachments=attachments, sync_state=SyncState.SYNCED)
        document = json.dumps(persisted.to_dict(), ensure_ascii=False, indent=2)

        await self.s3.put_object(
            self.entry_key(owner, entry.date_key, entry.id),
            document.encode("utf-8"),
            content_type="application/json"
        )

        logger.info(f"Uploaded entry {entry.id} for {owner}")
        return persisted

    async def fetch_entries(self, owner: str, date_key: str) -> List[Entry]:
        """
        Read every entry document stored for a date.

        A missing folder anywhere in the chain means nothing was ever stored
        there. Unreadable or malformed documents are logged and skipped.

        Raises:
            RemoteStoreError: If the folder cannot be checked or listed
        """
        chain = self._folder_chain(owner, date_key)
        for folder in chain[1:]:
            if not await self.s3.folder_exists(folder):
                logger.info(f"No remote folder {folder}, nothing to fetch")
                return []

        keys = await self.s3.list_keys(chain[-1])
        entries = []
        for key in keys:
            name = key.rsplit("/", 1)[-1]
            if not (name.startswith(ENTRY_PREFIX) and name.endswith(ENTRY_SUFFIX)):
                continue
            try:
                raw = await self.s3.get_object(key)
                entries.append(self._parse_document(raw))
            except (MalformedEntryError, ObjectNotFoundError) as e:
                logger.warning(f"Skipping remote document {key}: {e}")
            except RemoteStoreError as e:
                logger.error(f"Error reading remote document {key}: {e}")

        logger.info(f"Fetched {len(entries)} remote entries for {owner} on {date_key}")
        return entries

    @staticmethod
    def _parse_document(raw: bytes) -> Entry:
        try:
            data: Dict[str, Any] = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedEntryError(f"Invalid JSON: {e}") from e
        return Entry.from_dict(data, default_sync_state=SyncState.SYNCED)

    async def _find_entry_key(self, owner: str, date_key: str, entry_id: str):
        key = self.entry_key(owner, date_key, entry_id)
        if await self.s3.object_exists(key):
            return key

        # Fall back to a name search in case the document sits under another date
        name = f"/{entry_document_name(entry_id)}"
        for candidate in await self.s3.list_keys(self.owner_folder(owner), recursive=True):
            if candidate.endswith(name):
                return candidate
        return None

    async def trash_entry(self, owner: str, date_key: str, entry_id: str) -> bool:
        """
        Soft-delete an entry document by moving it into the trash folder.

        Returns:
            True if a document was found and trashed, False if none exists

        Raises:
            RemoteStoreError: On any failure other than not-found
        """
        key = await self._find_entry_key(owner, date_key, entry_id)
        if key is None:
            logger.warning(f"Document for entry {entry_id} not found remotely, skipping")
            return False

        try:
            await self.s3.move_object(key, self.trash_key(key))
        except ObjectNotFoundError:
            logger.warning(f"Document {key} vanished before it could be trashed")
            return False

        logger.info(f"Trashed remote document {key}")
        return True

    def owns_key(self, owner: str, key: str) -> bool:
        """Whether an object key lies inside the owner's folder tree."""
        return key.startswith(self.owner_folder(owner)) and ".." not in key.split("/")

    async def open_attachment(self, key: str) -> Dict[str, Any]:
        """Open an uploaded attachment for streaming back to the client."""
        return await self.s3.open_object(key)
