from services.delivery.bulk import BulkCampaignService
from services.delivery.queue import DeliveryQueue


__all__ = ["BulkCampaignService", "DeliveryQueue"]
