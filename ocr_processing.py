import logging
from typing import Optional
from mistralai import DocumentURLChunk, ImageURLChunk
from mistralai.models import OCRResponse
from config import Config
from models import SelectedFile

logger = logging.getLogger(__name__)

def _merge_md(resp: OCRResponse) -> str:
    """Merge markdown pages from OCR response"""
    return "\n\n".join(p.markdown for p in resp.pages if p.markdown)

def ocr_document(mistral_client, selected_file: SelectedFile, model: Optional[str] = None) -> str:
    """Run Mistral OCR over a PDF or image and return the merged markdown.

    The file is sent inline as a base64 data URL; PDFs go as a document chunk,
    JPEG/PNG as an image chunk.
    """
    url = selected_file.data_url()
    if selected_file.is_pdf:
        document = DocumentURLChunk(document_url=url)
    else:
        document = ImageURLChunk(image_url=url)

    resp = mistral_client.ocr.process(
        document=document,
        model=model or Config.OCR_MODEL,
        include_image_base64=False,
    )
    md = _merge_md(resp)
    logger.info(f"OCR returned {len(resp.pages)} page(s), {len(md)} chars for {selected_file.filename}")
    return md
