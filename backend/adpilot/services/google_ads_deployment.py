"""
Google Ads Deployment — Display, Search and Video campaigns.

Sequence: campaign budget -> campaign -> ad group -> (assets) -> ad.
Budgets and CPA targets are sent in micros. Every resource belongs to one
strategy: the campaign is bound to the strategy's budget.
"""

import logging

from adpilot.models import Campaign, Customer, Strategy
from adpilot.platform_client import ResourceSpec, BUDGET, CAMPAIGN, AD_GROUP, AD
from adpilot.services.deployment_strategy import (
    DeploymentStrategy, DeploymentTarget, CreativeInputs, ValidationFailure,
)

logger = logging.getLogger(__name__)

# Responsive ad limits
MAX_SEARCH_HEADLINES = 15
MAX_SEARCH_DESCRIPTIONS = 4
MAX_DISPLAY_HEADLINES = 5
MAX_DISPLAY_DESCRIPTIONS = 5


def _micros(amount: float) -> int:
    return int(round(amount * 1_000_000))


def _customer_id(customer: Customer) -> str:
    return (customer.google_ads_customer_id or "").replace("-", "")


class GoogleAdsDeployment(DeploymentStrategy):
    channel_type: str
    ad_group_type: str
    label: str

    def validate(self, customer: Customer, campaign: Campaign, strategy: Strategy, inputs: CreativeInputs) -> None:
        if not _customer_id(customer):
            raise ValidationFailure(f"No Google Ads account linked for customer {customer.id}")
        if not (strategy.daily_budget or campaign.daily_budget):
            raise ValidationFailure(f"No daily budget set for campaign {campaign.id}")
        self.check_inputs(campaign, inputs)

    async def run_steps(self, customer: Customer, campaign: Campaign, strategy: Strategy, inputs: CreativeInputs) -> None:
        account_id = _customer_id(customer)
        budget = strategy.daily_budget or campaign.daily_budget

        budget_id = await self.ensure_resource(
            "budget", strategy, "platform_budget_id", account_id,
            ResourceSpec(BUDGET, self.resource_name(campaign, f"{self.label} Budget", strategy), {
                "amount_micros": _micros(budget),
                "delivery_method": "STANDARD",
                "explicitly_shared": False,
            }),
        )

        campaign_attrs = {
            "advertising_channel_type": self.channel_type,
            "status": "ENABLED",
            "campaign_budget": budget_id,
            "bidding_strategy": strategy.bidding_strategy or {"type": "MAXIMIZE_CONVERSIONS"},
        }
        if strategy.cpa_target_micros:
            campaign_attrs["target_cpa_micros"] = strategy.cpa_target_micros
        if campaign.start_date:
            campaign_attrs["start_date"] = campaign.start_date.isoformat()
        if campaign.end_date:
            campaign_attrs["end_date"] = campaign.end_date.isoformat()

        campaign_id = await self.ensure_resource(
            "campaign", strategy, "platform_campaign_id", account_id,
            ResourceSpec(CAMPAIGN, self.resource_name(campaign, self.label, strategy), campaign_attrs),
        )
        if campaign.external_campaign_id(strategy.platform) != campaign_id:
            campaign.set_external_campaign_id(strategy.platform, campaign_id)
            await self.db.commit()

        ad_group_id = await self.ensure_resource(
            "ad_group", strategy, "ad_group_id", campaign_id,
            ResourceSpec(AD_GROUP, self.resource_name(campaign, f"{self.label} Ad Group", strategy), {
                "type": self.ad_group_type,
                "status": "ENABLED",
            }),
        )

        ad_attrs = {}
        if not strategy.ad_id:
            ad_attrs = await self.ad_attributes(account_id, customer, campaign, strategy, inputs)
        await self.ensure_resource(
            "ad", strategy, "ad_id", ad_group_id,
            ResourceSpec(AD, self.resource_name(campaign, f"{self.label} Ad", strategy), ad_attrs),
        )

    async def ad_attributes(self, account_id: str, customer: Customer, campaign: Campaign,
                            strategy: Strategy, inputs: CreativeInputs) -> dict:
        raise NotImplementedError


class GoogleDisplayDeployment(GoogleAdsDeployment):
    target = DeploymentTarget.GOOGLE_DISPLAY
    channel_type = "DISPLAY"
    ad_group_type = "DISPLAY_STANDARD"
    label = "Display"
    needs_images = True

    async def ad_attributes(self, account_id, customer, campaign, strategy, inputs) -> dict:
        image_ids = await self.ensure_assets("image_assets", strategy, account_id, inputs.images, "image")
        return {
            "type": "RESPONSIVE_DISPLAY_AD",
            "final_urls": [campaign.landing_page_url],
            "headlines": inputs.headlines[:MAX_DISPLAY_HEADLINES],
            "long_headline": inputs.headlines[0],
            "descriptions": inputs.descriptions[:MAX_DISPLAY_DESCRIPTIONS],
            "business_name": customer.name,
            "marketing_images": image_ids,
        }


class GoogleSearchDeployment(GoogleAdsDeployment):
    target = DeploymentTarget.GOOGLE_SEARCH
    channel_type = "SEARCH"
    ad_group_type = "SEARCH_STANDARD"
    label = "Search"

    async def ad_attributes(self, account_id, customer, campaign, strategy, inputs) -> dict:
        return {
            "type": "RESPONSIVE_SEARCH_AD",
            "final_urls": [campaign.landing_page_url],
            "headlines": inputs.headlines[:MAX_SEARCH_HEADLINES],
            "descriptions": inputs.descriptions[:MAX_SEARCH_DESCRIPTIONS],
        }


class GoogleVideoDeployment(GoogleAdsDeployment):
    target = DeploymentTarget.GOOGLE_VIDEO
    channel_type = "VIDEO"
    ad_group_type = "VIDEO_RESPONSIVE"
    label = "Video"
    needs_videos = True

    async def ad_attributes(self, account_id, customer, campaign, strategy, inputs) -> dict:
        video_ids = await self.ensure_assets("video_assets", strategy, account_id, inputs.videos[:1], "video")
        return {
            "type": "VIDEO_RESPONSIVE_AD",
            "final_urls": [campaign.landing_page_url],
            "headlines": inputs.headlines[:1],
            "long_headlines": inputs.headlines[:1],
            "descriptions": inputs.descriptions[:1],
            "videos": video_ids,
            "call_to_action": "LEARN_MORE",
        }
