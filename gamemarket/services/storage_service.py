# gamemarket/services/storage_service.py
import logging
import secrets
import aiofiles
import aiofiles.os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence
from ..config import Config
from ..exceptions import StorageError, ValidationError
from ..models.refund import MAX_PROOFS, MIN_PROOFS, ProofFile

class ProofStorage:
    """Object storage for refund proofs"""

    ALLOWED_EXTENSIONS = {
        # images
        'image/jpeg': '.jpg',
        'image/png': '.png',
        'image/gif': '.gif',
        'image/webp': '.webp',

        # videos
        'video/mp4': '.mp4',
        'video/webm': '.webm',
        'video/quicktime': '.mov',

        # documents
        'application/pdf': '.pdf',
    }

    MAX_FILE_SIZE = 20 * 1024 * 1024  # 20MB

    def __init__(self, base_dir: Optional[Path] = None, public_url: Optional[str] = None):
        self.base_dir = Path(base_dir or Config.PROOF_STORAGE_DIR)
        self.public_url = (public_url or Config.PROOF_PUBLIC_URL).rstrip('/')
        self.logger = logging.getLogger(__name__)

    def validate_proofs(self, proofs: Sequence[ProofFile]):
        """Count, type and size checks; no I/O"""
        if not MIN_PROOFS <= len(proofs) <= MAX_PROOFS:
            raise ValidationError(
                f"Send between {MIN_PROOFS} and {MAX_PROOFS} proof files",
                code="invalid_proof_count"
            )

        for proof in proofs:
            if proof.content_type not in self.ALLOWED_EXTENSIONS:
                raise ValidationError(
                    f"File type not allowed: {proof.filename}",
                    code="invalid_proof_type"
                )
            if proof.size == 0 or proof.size > self.MAX_FILE_SIZE:
                raise ValidationError(
                    f"File is empty or too large: {proof.filename}",
                    code="invalid_proof_size"
                )

    def url_for(self, path: str) -> str:
        return f"{self.public_url}/{path}"

    def path_for_url(self, url: str) -> Optional[str]:
        prefix = self.public_url + "/"
        return url[len(prefix):] if url.startswith(prefix) else None

    async def upload(self, path: str, data: bytes) -> str:
        """Write one object and return its public URL"""
        target = self.base_dir / path
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, 'wb') as f:
            await f.write(data)
        return self.url_for(path)

    async def delete(self, path: str) -> bool:
        target = self.base_dir / path
        try:
            await aiofiles.os.remove(target)
            return True
        except FileNotFoundError:
            return False

    async def upload_proofs(self, prefix: str, proofs: Sequence[ProofFile]) -> List[str]:
        """Upload all proofs or none.

        On the first failure every file already written for this batch is
        removed and a StorageError naming the failing file is raised.
        """
        uploaded: List[str] = []
        stamp = datetime.now().strftime('%Y%m%d%H%M%S')

        for proof in proofs:
            extension = self.ALLOWED_EXTENSIONS[proof.content_type]
            path = f"{prefix}/{stamp}-{secrets.token_hex(4)}{extension}"
            try:
                await self.upload(path, proof.data)
            except OSError as e:
                self.logger.error(f"Proof upload failed for {proof.filename}: {e}")
                await self.discard(uploaded)
                raise StorageError(f"Failed to upload file: {proof.filename}", code="proof_upload_failed") from e
            uploaded.append(path)

        return [self.url_for(path) for path in uploaded]

    async def discard(self, paths: Sequence[str]):
        """Best-effort removal of a batch"""
        for path in paths:
            try:
                await self.delete(path)
            except OSError as e:
                self.logger.error(f"Could not remove orphaned proof {path}: {e}")

    async def discard_urls(self, urls: Sequence[str]):
        await self.discard([p for p in (self.path_for_url(u) for u in urls) if p])
