# import every model so Base.metadata knows all tables
from aiborn.models.user import User  # noqa: F401
from aiborn.models.receipt import Receipt, BonusClaim  # noqa: F401
from aiborn.models.job import ReceiptJob  # noqa: F401
from aiborn.models.download import BonusDownload  # noqa: F401
from aiborn.models.code import Code, CodeRedemption  # noqa: F401
from aiborn.models.newsletter import NewsletterSubscriber  # noqa: F401
