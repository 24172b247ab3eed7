import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from errors import PreconditionError, RenderError
from fields import find_email_column, is_blank, map_fields, sanitize_email_for_filename
from layouts import Layout
from ledger import CertificateLedger, CertificateRecord, utcnow
from rendering import CANVAS_HEIGHT, CANVAS_WIDTH, PillowRasterizer, build_document

logger = logging.getLogger("certportal.generator")


class BatchResult(BaseModel):
    records: List[CertificateRecord]
    skippedCount: int
    batchId: int
    emailColumn: str


class BatchGenerator:
    """
    Renders one certificate per spreadsheet row and records the batch in the ledger.

    Rows are processed in order; the ledger only sees a batch once every row
    has been rendered and written.
    """

    def __init__(
        self,
        ledger: CertificateLedger,
        output_dir: str,
        rasterizer: Optional[PillowRasterizer] = None,
        canvas_width: int = CANVAS_WIDTH,
        canvas_height: int = CANVAS_HEIGHT,
    ):
        self.ledger = ledger
        self.output_dir = output_dir
        self.rasterizer = rasterizer or PillowRasterizer()
        self.canvas_width = canvas_width
        self.canvas_height = canvas_height
        self._id_lock = threading.Lock()
        self._last_batch_id = ledger.last_batch_id()

    def next_batch_id(self) -> int:
        """
        Millisecond timestamp, bumped if needed so it never repeats.
        """
        with self._id_lock:
            batch_id = max(int(time.time() * 1000), self._last_batch_id + 1)
            self._last_batch_id = batch_id
            return batch_id

    def generate(
        self,
        records: List[Dict[str, Any]],
        layout: Layout,
        column_mapping: Dict[str, str],
        template_image: bytes,
        template_id: str,
        template_file: str,
    ) -> BatchResult:
        email_column = find_email_column(column_mapping, records)
        if not email_column:
            raise PreconditionError(
                "Email column not found! Please include an email field in your Excel data and mapping."
            )
        logger.info("Email column found: %s", email_column)

        batch_id = self.next_batch_id()
        os.makedirs(self.output_dir, exist_ok=True)

        created: List[CertificateRecord] = []
        written: List[str] = []
        skipped = 0

        try:
            for index, row in enumerate(records, start=1):
                logger.info("Processing certificate %d/%d", index, len(records))
                display_fields = map_fields(column_mapping, row)

                email = row.get(email_column)
                if is_blank(email) or not str(email).strip():
                    logger.warning("Skipping row %d: no email found", index)
                    skipped += 1
                    continue
                email = str(email)

                file_name = f"{sanitize_email_for_filename(email)}_{batch_id}_{index}.png"
                path = os.path.join(self.output_dir, file_name)

                document = build_document(
                    template_image, layout, display_fields, self.canvas_width, self.canvas_height
                )
                png = self.rasterizer.rasterize(document)
                with open(path, "wb") as f:
                    f.write(png)
                written.append(path)

                created.append(CertificateRecord(
                    email=email,
                    file_name=file_name,
                    data=display_fields,
                    generated_at=utcnow(),
                    template_id=template_id,
                    template_file=template_file,
                    certificate_id=f"{template_id}_{batch_id}_{index}",
                    batch_id=batch_id,
                ))

            self.ledger.append_batch(created)
        except Exception as e:
            logger.exception("Batch %s aborted, discarding %d image(s)", batch_id, len(written))
            for path in written:
                try:
                    os.remove(path)
                except OSError:
                    logger.warning("Could not remove %s", path)
            raise RenderError(f"Certificate generation failed: {e}") from e

        logger.info("Generated %d certificate(s), skipped %d, batch %s", len(created), skipped, batch_id)
        return BatchResult(records=created, skippedCount=skipped, batchId=batch_id, emailColumn=email_column)
