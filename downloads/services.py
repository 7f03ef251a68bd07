import logging

from django.db import DatabaseError, transaction
from django.db.models import F

from catalog.models import Product
from .models import DownloadToken, MAX_DOWNLOADS

logger = logging.getLogger(__name__)


class TokenNotFound(Exception): pass
class TokenExpired(Exception): pass
class FileNotAvailable(Exception): pass


def deliverable_files(product: Product) -> tuple[list, list]:
    """Documents and audio files of a product, each in file_order."""
    return list(product.document_files.order_by("file_order", "id")), list(product.audio_files.order_by("file_order", "id"))


@transaction.atomic
def create_tokens(order, product: Product) -> list[DownloadToken]:
    """Mint one token per deliverable file: documents first, then audio."""
    documents, audio = deliverable_files(product)
    tokens = []
    for doc in documents:
        tokens.append(DownloadToken.objects.create(order=order, product=product, document_file=doc))
    for track in audio:
        tokens.append(DownloadToken.objects.create(order=order, product=product, audio_file=track))
    if not tokens:
        logger.warning("No deliverable files for product %s on order %s", product.pk, order.order_number)
    return tokens


def ensure_tokens(order) -> list[DownloadToken]:
    """Backfill tokens for order items that have none yet; safe to call repeatedly."""
    for item in order.items.select_related("product").all():
        if item.product is None:
            continue
        if not DownloadToken.objects.filter(order=order, product=item.product).exists():
            logger.info("Backfilling download tokens for order=%s product=%s", order.order_number, item.product_id)
            create_tokens(order, item.product)
    return list(
        DownloadToken.objects.filter(order=order)
        .select_related("product", "document_file", "audio_file")
        .order_by("product_id", "created_at", "id")
    )


def validate_token(value: str) -> DownloadToken:
    try:
        token = DownloadToken.objects.select_related("product", "order", "document_file", "audio_file").get(token=value)
    except DownloadToken.DoesNotExist:
        raise TokenNotFound(value)
    if token.is_expired:
        raise TokenExpired(value)
    return token


def positional_file(token: DownloadToken, documents: list, audio: list):
    siblings = list(
        DownloadToken.objects.filter(order_id=token.order_id, product_id=token.product_id, positional=True)
        .order_by("created_at", "id")
        .values_list("pk", flat=True)
    )
    position = siblings.index(token.pk)
    if position < len(documents):
        return documents[position]
    position -= len(documents)
    if position < len(audio):
        return audio[position]
    return None


def resolve_file(token: DownloadToken):
    """The document or audio file a token grants access to."""
    if token.file is not None:
        return token.file
    if not token.positional:
        raise FileNotAvailable("File referenced by this token was removed")
    documents, audio = deliverable_files(token.product)
    if not documents and not audio:
        raise FileNotAvailable("Product has no deliverable files")
    resolved = positional_file(token, documents, audio)
    if resolved is None:
        raise FileNotAvailable("Token position is outside the product's files")
    return resolved


def consume_download(token: DownloadToken) -> bool:
    """Count one download unless the quota is already used up."""
    updated = DownloadToken.objects.filter(pk=token.pk, download_count__lt=MAX_DOWNLOADS).update(
        download_count=F("download_count") + 1
    )
    if updated:
        token.refresh_from_db(fields=["download_count"])
    return bool(updated)


def bump_product_downloads(product_id) -> None:
    try:
        Product.objects.filter(pk=product_id).update(download_count=F("download_count") + 1)
    except DatabaseError:
        logger.warning("Could not update download counter for product %s", product_id, exc_info=True)
