"""
Facebook Ads Deployment — Display (image) and Video campaigns.

Sequence: campaign -> ad set (targeting + budget) -> creative -> ad.
Creatives reference assets by their public storage URL and are published
through the customer's linked Facebook Page. The campaign is shared by
successive strategies; ad set, creative and ad belong to one strategy.
"""

import logging

from adpilot.models import Campaign, Customer, Strategy
from adpilot.platform_client import ResourceSpec, CAMPAIGN, AD_SET, CREATIVE, AD
from adpilot.services.deployment_strategy import (
    DeploymentStrategy, DeploymentTarget, CreativeInputs, ValidationFailure,
)

logger = logging.getLogger(__name__)

DEFAULT_TARGETING = {
    "geo_locations": {"countries": ["US"]},
    "age_min": 18,
    "age_max": 65,
    "genders": [0],
}
CALL_TO_ACTION = "LEARN_MORE"


def _account_id(customer: Customer) -> str:
    return (customer.facebook_ads_account_id or "").replace("act_", "")


def _cents(amount: float) -> int:
    return int(round(amount * 100))


class FacebookAdsDeployment(DeploymentStrategy):
    objective: str
    optimization_goal: str
    label: str

    def validate(self, customer: Customer, campaign: Campaign, strategy: Strategy, inputs: CreativeInputs) -> None:
        if not _account_id(customer):
            raise ValidationFailure(f"No Facebook Ads account linked for customer {customer.id}")
        if not customer.facebook_page_id:
            raise ValidationFailure(
                f"No Facebook Page linked for customer {customer.id}. Please connect a Facebook Page first."
            )
        if not (strategy.daily_budget or campaign.daily_budget):
            raise ValidationFailure(f"No daily budget set for campaign {campaign.id}")
        self.check_inputs(campaign, inputs)

    async def run_steps(self, customer: Customer, campaign: Campaign, strategy: Strategy, inputs: CreativeInputs) -> None:
        account_id = _account_id(customer)
        budget = strategy.daily_budget or campaign.daily_budget

        fb_campaign_id = await self.ensure_resource(
            "campaign", strategy, "platform_campaign_id", account_id,
            ResourceSpec(CAMPAIGN, self.resource_name(campaign, self.label), {
                "objective": self.objective,
                "status": "ACTIVE",
                "special_ad_categories": [],
            }),
        )
        if campaign.external_campaign_id(strategy.platform) != fb_campaign_id:
            campaign.set_external_campaign_id(strategy.platform, fb_campaign_id)
            await self.db.commit()

        adset_id = await self.ensure_resource(
            "ad_set", strategy, "ad_group_id", fb_campaign_id,
            ResourceSpec(AD_SET, self.resource_name(campaign, f"{self.label} Ad Set", strategy), {
                "daily_budget": _cents(budget),
                "billing_event": "IMPRESSIONS",
                "optimization_goal": self.optimization_goal,
                "targeting": DEFAULT_TARGETING,
                "status": "ACTIVE",
            }),
        )

        creative_attrs = {}
        if not strategy.creative_id:
            creative_attrs = self.creative_attributes(customer, campaign, inputs)
        creative_id = await self.ensure_resource(
            "creative", strategy, "creative_id", account_id,
            ResourceSpec(CREATIVE, self.resource_name(campaign, f"{self.label} Creative", strategy), creative_attrs),
        )

        await self.ensure_resource(
            "ad", strategy, "ad_id", adset_id,
            ResourceSpec(AD, self.resource_name(campaign, f"{self.label} Ad", strategy), {
                "creative_id": creative_id,
                "status": "ACTIVE",
            }),
        )

    def creative_attributes(self, customer: Customer, campaign: Campaign, inputs: CreativeInputs) -> dict:
        raise NotImplementedError


class FacebookDisplayDeployment(FacebookAdsDeployment):
    target = DeploymentTarget.FACEBOOK_DISPLAY
    objective = "LINK_CLICKS"
    optimization_goal = "LINK_CLICKS"
    label = "Display"
    needs_images = True

    def creative_attributes(self, customer, campaign, inputs) -> dict:
        # One main image per creative
        return {
            "object_story_spec": {
                "page_id": customer.facebook_page_id,
                "link_data": {
                    "link": campaign.landing_page_url,
                    "image_url": self.storage.url_for(inputs.images[0]),
                    "name": inputs.headlines[0],
                    "message": inputs.descriptions[0],
                    "call_to_action": {"type": CALL_TO_ACTION},
                },
            },
        }


class FacebookVideoDeployment(FacebookAdsDeployment):
    target = DeploymentTarget.FACEBOOK_VIDEO
    objective = "VIDEO_VIEWS"
    optimization_goal = "VIDEO_VIEWS"
    label = "Video"
    needs_videos = True

    def creative_attributes(self, customer, campaign, inputs) -> dict:
        return {
            "object_story_spec": {
                "page_id": customer.facebook_page_id,
                "video_data": {
                    "video_url": self.storage.url_for(inputs.videos[0]),
                    "title": inputs.headlines[0],
                    "message": inputs.descriptions[0],
                    "call_to_action": {
                        "type": CALL_TO_ACTION,
                        "value": {"link": campaign.landing_page_url},
                    },
                },
            },
        }
