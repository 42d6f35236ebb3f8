from rank_engine.models.donation import Donation
from rank_engine.models.rank import Base, Rank
from rank_engine.models.site_setting import SiteSetting
from rank_engine.models.user import User

__all__ = ["Base", "Donation", "Rank", "SiteSetting", "User"]
