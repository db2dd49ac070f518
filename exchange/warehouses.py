from datetime import datetime, timezone

from .documents import DocumentNotFoundError, DocumentStore
from .errors import NotFoundError, ValidationError
from .models import CreateWarehouseRequest, UpdateWarehouseRequest, Warehouse

WAREHOUSES = "warehouses"

REQUIRED_FIELDS = ("name", "address_line1", "city", "state", "postal_code", "country")


class WarehouseDirectory:
    """Return addresses that approved exchanges are shipped to."""

    def __init__(self, documents: DocumentStore, collection: str = WAREHOUSES):
        self.documents = documents
        self.collection = collection

    def create(self, request: CreateWarehouseRequest) -> Warehouse:
        missing = [f for f in REQUIRED_FIELDS if not getattr(request, f).strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        now = datetime.now(timezone.utc)
        data = {**request.model_dump(), "created_at": now, "updated_at": now}
        doc_id = self.documents.add(self.collection, data)
        return self.get(doc_id)

    def get(self, warehouse_id: str) -> Warehouse:
        doc = self.documents.get(self.collection, warehouse_id)
        if doc is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        return Warehouse(**doc)

    def list_all(self) -> list[Warehouse]:
        docs = self.documents.query(self.collection, order_by="name")
        return [Warehouse(**d) for d in docs]

    def update(self, warehouse_id: str, request: UpdateWarehouseRequest) -> Warehouse:
        fields = request.model_dump(exclude_unset=True)
        blanked = [f for f in REQUIRED_FIELDS if f in fields and not (fields[f] or "").strip()]
        if blanked:
            raise ValidationError(f"Required fields cannot be empty: {', '.join(blanked)}")

        fields["updated_at"] = datetime.now(timezone.utc)
        try:
            doc = self.documents.update(self.collection, warehouse_id, fields)
        except DocumentNotFoundError:
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        return Warehouse(**doc)

    def delete(self, warehouse_id: str) -> None:
        if not self.documents.delete(self.collection, warehouse_id):
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
