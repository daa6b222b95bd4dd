"""Payment gateway factory.

build_gateway() picks the adapter named by PAYMENT_GATEWAY:
- MidtransGateway (default) talks to Midtrans sandbox or production
- FakeGateway for local development without credentials
"""

import logging

from paygate.gateway.fake import FakeGateway
from paygate.gateway.midtrans import MidtransGateway
from paygate.gateway.port import PaymentGateway
from paygate_common.utils import Settings

logger = logging.getLogger(__name__)


def build_gateway(config: Settings) -> PaymentGateway:
    if config.PAYMENT_GATEWAY == "fake":
        logger.warning("Using the fake payment gateway; no real charges will be made")
        return FakeGateway()

    if not config.MIDTRANS_SERVER_KEY:
        logger.warning("MIDTRANS_SERVER_KEY is empty; charges and notifications will be rejected")
    return MidtransGateway(
        server_key=config.MIDTRANS_SERVER_KEY,
        environment=config.MIDTRANS_ENVIRONMENT,
        timeout=config.GATEWAY_TIMEOUT_SECONDS,
    )


__all__ = ["PaymentGateway", "MidtransGateway", "FakeGateway", "build_gateway"]
