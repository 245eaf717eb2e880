"""
Publishing package — platform clients, token guard, scheduler, metrics.
"""

from src.publish.base import MediaRequiredError, PublishError, PublishResult, TokenGrant
from src.publish.facebook import FacebookClient, FacebookError
from src.publish.instagram import InstagramClient, InstagramError
from src.publish.scheduler import PostOutcome, SchedulerRun, run_metrics_refresh, run_scheduler
from src.publish.tokens import RefreshError, ensure_valid_token
from src.publish.twitter import TwitterClient, TwitterError

__all__ = [
    "PublishError",
    "PublishResult",
    "MediaRequiredError",
    "TokenGrant",
    "TwitterClient",
    "TwitterError",
    "InstagramClient",
    "InstagramError",
    "FacebookClient",
    "FacebookError",
    "RefreshError",
    "ensure_valid_token",
    "PostOutcome",
    "SchedulerRun",
    "run_scheduler",
    "run_metrics_refresh",
]
