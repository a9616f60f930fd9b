from app.donations.models.donation import DonationModel  # noqa: F401
from app.donations.models.email_settings import EmailSettingsModel  # noqa: F401
