import base64
from pydantic import BaseModel, Field
from typing import List, Literal, Optional

class LineItem(BaseModel):
    description: str = Field(default="", description="Product/service description")
    quantity: float = Field(default=0.0, description="Quantity ordered")
    unit_price: float = Field(default=0.0, description="Price per unit")
    total_price: float = Field(default=0.0, description="Total price for this line item")
    unit: Optional[str] = Field(default=None, description="Unit of measurement (e.g., 'each', 'kg', 'hours')")
    sku: Optional[str] = Field(default=None, description="Product SKU or code")
    tax_rate: Optional[float] = Field(default=None, description="Tax rate for this item")

class InvoiceData(BaseModel):
    # Invoice Header
    invoice_number: str = Field(default="", description="Invoice number")
    invoice_date: str = Field(default="", description="Invoice date in YYYY-MM-DD format")
    due_date: Optional[str] = Field(default=None, description="Due date in YYYY-MM-DD format")

    # Vendor Information
    vendor_name: str = Field(default="", description="Vendor/supplier name")
    vendor_address: Optional[str] = Field(default=None, description="Vendor address")
    vendor_tax_id: Optional[str] = Field(default=None, description="Vendor tax ID")

    # Customer Information
    customer_name: Optional[str] = Field(default=None, description="Customer name")
    customer_address: Optional[str] = Field(default=None, description="Customer address")

    # Line Items
    line_items: List[LineItem] = Field(default_factory=list, description="List of invoice line items")

    # Totals
    subtotal: float = Field(default=0.0, description="Subtotal amount")
    tax_amount: Optional[float] = Field(default=None, description="Total tax amount")
    total_amount: float = Field(default=0.0, description="Total invoice amount")
    currency: Optional[str] = Field(default="USD", description="Currency code")

    def to_line_records(self) -> List["InvoiceLineRecord"]:
        """Flatten the invoice into one record per line item, header fields repeated."""
        return [
            InvoiceLineRecord(
                invoice_number=self.invoice_number,
                invoice_date=self.invoice_date,
                vendor_name=self.vendor_name,
                customer_name=self.customer_name,
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                tax_rate=item.tax_rate,
                total_price=item.total_price,
                currency=self.currency,
            )
            for item in self.line_items
        ]

class InvoiceLineRecord(BaseModel):
    invoice_number: str = ""
    invoice_date: str = ""
    vendor_name: str = ""
    customer_name: Optional[str] = None
    description: str = ""
    quantity: float = 0.0
    unit: Optional[str] = None
    unit_price: float = 0.0
    tax_rate: Optional[float] = None
    total_price: float = 0.0
    currency: Optional[str] = None

# Column order of the results table and the exported sheet
RECORD_FIELDS = list(InvoiceLineRecord.model_fields)
NUMERIC_FIELDS = {'quantity', 'unit_price', 'tax_rate', 'total_price'}

class ProcessingStatus(BaseModel):
    status: Literal['idle', 'processing', 'completed', 'error'] = 'idle'
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "ProcessingStatus":
        return cls(status='idle')

    @classmethod
    def processing(cls) -> "ProcessingStatus":
        return cls(status='processing', message='Analyzing invoice with AI...')

    @classmethod
    def completed(cls, count: int) -> "ProcessingStatus":
        return cls(status='completed', message=f'Successfully extracted {count} item(s) from the invoice')

    @classmethod
    def failed(cls, message: Optional[str] = None) -> "ProcessingStatus":
        return cls(status='error', message=message or 'Failed to process invoice')

    @property
    def is_processing(self) -> bool:
        return self.status == 'processing'

class SelectedFile(BaseModel):
    filename: str
    content_type: Literal['application/pdf', 'image/jpeg', 'image/png']
    data: bytes

    @property
    def is_pdf(self) -> bool:
        return self.content_type == 'application/pdf'

    def data_url(self) -> str:
        b64 = base64.b64encode(self.data).decode()
        return f"data:{self.content_type};base64,{b64}"
