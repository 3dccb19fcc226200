# Offers module
from edufund.modules.offers.models import Offer, OfferStatus

__all__ = ["Offer", "OfferStatus"]
