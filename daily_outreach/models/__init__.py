# Models package - normalized database models
from daily_outreach.models.user import User
from daily_outreach.models.contact import Company, Contact
from daily_outreach.models.profile import StrategicProfile, SenderProfile, CustomerProfile
from daily_outreach.models.preferences import OutreachPreferences
from daily_outreach.models.outreach import OutreachBatch, OutreachItem, CommunicationHistory
from daily_outreach.models.job import OutreachJob, OutreachJobLog
