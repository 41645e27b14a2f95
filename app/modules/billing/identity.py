import hashlib


def build_invoice_id(document_type: str, serie: str, numero: str) -> str:
    """
    ID determinístico de la factura a partir de (tipo, serie, número).

    Se usa como clave primaria dentro del negocio: crear dos veces el mismo
    comprobante apunta a la misma clave y la segunda creación se rechaza.
    SHA-1 para que los IDs ya emitidos sigan siendo válidos.
    """
    key = f"{document_type}|{serie}|{numero}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()
