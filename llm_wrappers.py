import json
import logging
import re
from typing import Any, Dict, List, Optional
from google import genai
from google.genai import types
from mistralai import Mistral, TextChunk, ImageURLChunk
from openai import OpenAI
from pydantic import BaseModel, ValidationError
from config import Config
from models import InvoiceData, InvoiceLineRecord, SelectedFile
from ocr_processing import ocr_document

logger = logging.getLogger(__name__)

PROVIDERS = ('mistral', 'openrouter', 'gemini')


class ExtractionError(RuntimeError):
    """Raised when the provider call fails or its response cannot be parsed."""


def _create_invoice_extraction_prompt(ocr_text: Optional[str] = None) -> str:
    """Create the prompt for invoice data extraction"""
    if ocr_text:
        source = f"**OCR TEXT:**\n{ocr_text}"
    else:
        source = "**SOURCE:** the attached invoice document."
    return f"""
You are an expert invoice data extraction specialist. Extract ALL information from the invoice below and convert it into structured JSON format.
**CRITICAL INSTRUCTIONS:**
1. **Extract ALL line items** - Don't miss any products/services listed
2. **Be precise with numbers** - Extract exact quantities, prices, and totals as numbers (not strings)
3. **Date format** - Use YYYY-MM-DD format for all dates
4. **Currency** - Remove currency symbols from amounts and put the ISO currency code in "currency"
5. **Line item details** - For each item, extract description, quantity, unit price, and total
6. **Handle missing data** - Use empty strings for missing text fields, 0.0 for missing numbers, empty arrays for missing lists
**JSON STRUCTURE REQUIRED:**
{{
    "invoice_number": "string",
    "invoice_date": "YYYY-MM-DD",
    "due_date": "YYYY-MM-DD or null",
    "vendor_name": "string",
    "vendor_address": "string or null",
    "vendor_tax_id": "string or null",
    "customer_name": "string or null",
    "customer_address": "string or null",
    "line_items": [
        {{
            "description": "string",
            "quantity": number,
            "unit_price": number,
            "total_price": number,
            "unit": "string or null",
            "sku": "string or null",
            "tax_rate": number or null
        }}
    ],
    "subtotal": number,
    "tax_amount": number or null,
    "total_amount": number,
    "currency": "string"
}}
**IMPORTANT:**
- Pay special attention to line items - extract every single item listed, in the order they appear
- Ensure all monetary amounts are numeric (no currency symbols)
- Use 0.0 for missing numeric values, not null
{source}
**RESPONSE FORMAT:**
Return ONLY valid JSON that matches the structure above. Include all line items found in the invoice.
"""

def _extract_json(text: str) -> Any:
    """Extract the first JSON block from text."""
    text = (text or "").strip()
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                pass
        raise ValueError("Failed to extract valid JSON from the AI response.")

def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = re.sub(r"[^\d.\-]", "", value.replace(",", ""))
    try:
        return float(value)
    except (ValueError, TypeError):
        return 0.0

_TEXT_FIELDS = ('invoice_number', 'invoice_date', 'vendor_name')
_OPTIONAL_TEXT_FIELDS = ('due_date', 'vendor_address', 'vendor_tax_id', 'customer_name', 'customer_address', 'currency')
_ITEM_OPTIONAL_TEXT_FIELDS = ('unit', 'sku')

def _to_text(value: Any, optional: bool = False) -> Optional[str]:
    if value is None:
        return None if optional else ""
    return value if isinstance(value, str) else str(value)

def clean_invoice_numbers(invoice_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Clean numeric fields at root and within line items to be floats, defaulting to 0.0 when invalid.
    Text fields given as numbers become strings; nulls in required text fields become "".
    """
    for field in ('subtotal', 'tax_amount', 'total_amount'):
        if field in invoice_data:
            invoice_data[field] = _to_float(invoice_data[field])
    for field in _TEXT_FIELDS:
        if field in invoice_data:
            invoice_data[field] = _to_text(invoice_data[field])
    for field in _OPTIONAL_TEXT_FIELDS:
        if field in invoice_data:
            invoice_data[field] = _to_text(invoice_data[field], optional=True)

    if isinstance(invoice_data.get('line_items'), list):
        cleaned_items = []
        for item in invoice_data['line_items']:
            if isinstance(item, dict):
                for field in ('quantity', 'unit_price', 'total_price'):
                    if field in item:
                        item[field] = _to_float(item[field])
                if item.get('tax_rate') is not None:
                    item['tax_rate'] = _to_float(item['tax_rate'])
                if 'description' in item:
                    item['description'] = _to_text(item['description'])
                for field in _ITEM_OPTIONAL_TEXT_FIELDS:
                    if field in item:
                        item[field] = _to_text(item[field], optional=True)
                cleaned_items.append(item)
        invoice_data['line_items'] = cleaned_items
    return invoice_data

def _mistral_parse(client: Mistral, chunks, model: str) -> Dict[str, Any]:
    """Parse invoice data using Mistral"""
    messages = [{"role": "user", "content": chunks}]
    try:
        chat = client.chat.parse(
            model=model,
            messages=messages,
            response_format=InvoiceData,
            temperature=0,
        )
        parsed = chat.choices[0].message.parsed
        if parsed is None:
            raise ValueError("Mistral returned no parsed content")
        return parsed.model_dump()
    except ValueError as e:
        # Only a reply that fails structured parsing falls back; transport and API errors propagate
        logger.warning(f"Structured parsing failed, trying regular completion: {str(e)}")
    chat = client.chat.complete(
        model=model,
        messages=messages,
        temperature=0,
    )
    raw_response = chat.choices[0].message.content
    return _extract_json(raw_response)

def _openrouter_parse(client: OpenAI, prompt_text: str, selected_file: SelectedFile, model: str) -> Dict[str, Any]:
    """Parse invoice data using OpenRouter"""
    data_url = selected_file.data_url()
    if selected_file.is_pdf:
        content = [{"type": "file", "file": {"filename": selected_file.filename, "file_data": data_url}}]
    else:
        content = [{"type": "image_url", "image_url": {"url": data_url}}]
    content.append({"type": "text", "text": prompt_text})

    completion = client.chat.completions.create(
        model=model,
        messages=[{"role": "user", "content": content}],
        temperature=0,
        extra_headers={
            "X-Title": "InvoiceExtractor",
            "HTTP-Referer": "https://localhost"
        },
    )
    raw = (completion.choices[0].message.content or "").strip()
    return _extract_json(raw)

def _gemini_parse(client: genai.Client, prompt_text: str, selected_file: SelectedFile, model: str) -> Dict[str, Any]:
    """Parse invoice data using Gemini structured output"""
    response = client.models.generate_content(
        model=model,
        contents=[
            types.Part.from_bytes(data=selected_file.data, mime_type=selected_file.content_type),
            prompt_text,
        ],
        config=types.GenerateContentConfig(
            temperature=0,
            response_mime_type="application/json",
            response_schema=InvoiceData,
        ),
    )
    parsed = getattr(response, "parsed", None)
    if isinstance(parsed, BaseModel):
        return parsed.model_dump()
    return _extract_json(response.text)

def _build_client(provider: str, api_key: str):
    if provider == 'mistral':
        return Mistral(api_key=api_key)
    if provider == 'openrouter':
        return OpenAI(base_url=Config.OPENROUTER_BASE_URL, api_key=api_key)
    return genai.Client(api_key=api_key)

def _default_model(provider: str) -> str:
    return {
        'mistral': Config.MISTRAL_MODEL,
        'openrouter': Config.OPENROUTER_MODEL,
        'gemini': Config.GEMINI_MODEL,
    }[provider]


class ExtractionClient:
    """Turns one invoice file into a list of line records via the configured AI provider.

    Constructing the client is the credential check: an empty key, an unknown
    provider or an SDK that refuses the key raises here, before any upload.
    """

    def __init__(self, api_key: str, provider: Optional[str] = None, model: Optional[str] = None):
        if not api_key or not api_key.strip():
            raise ValueError("API key is required")
        provider = (provider or Config.LLM_PROVIDER).lower()
        if provider not in PROVIDERS:
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.provider = provider
        self.model = model or _default_model(provider)
        self._client = _build_client(provider, api_key.strip())

    def parse_invoice(self, selected_file: SelectedFile) -> Any:
        """Call the provider and return its raw decoded JSON."""
        if self.provider == 'mistral':
            ocr_text = ocr_document(self._client, selected_file)
            chunks = [TextChunk(text=_create_invoice_extraction_prompt(ocr_text))]
            if not selected_file.is_pdf:
                chunks = [ImageURLChunk(image_url=selected_file.data_url())] + chunks
            return _mistral_parse(self._client, chunks, self.model)
        prompt = _create_invoice_extraction_prompt()
        if self.provider == 'openrouter':
            return _openrouter_parse(self._client, prompt, selected_file, self.model)
        return _gemini_parse(self._client, prompt, selected_file, self.model)

    def extract(self, selected_file: SelectedFile) -> List[InvoiceLineRecord]:
        logger.info(f"Extracting {selected_file.filename} ({selected_file.content_type}) with {self.provider}/{self.model}")
        try:
            invoice_data = self.parse_invoice(selected_file)
        except Exception as e:
            logger.exception(f"LLM extraction failed for {selected_file.filename}")
            raise ExtractionError(str(e) or "Failed to process invoice") from e

        # Some providers wrap a single object in a list
        if isinstance(invoice_data, list) and len(invoice_data) == 1:
            invoice_data = invoice_data[0]
        if not isinstance(invoice_data, dict):
            raise ExtractionError("Invalid data structure returned from LLM")

        try:
            invoice = InvoiceData.model_validate(clean_invoice_numbers(invoice_data))
        except ValidationError as e:
            raise ExtractionError(f"AI response did not match the invoice schema ({e.error_count()} error(s))") from e

        records = invoice.to_line_records()
        logger.info(f"Extracted {len(records)} line item(s) from {selected_file.filename}")
        return records
