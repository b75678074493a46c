from .db import db
from .user import User
from .linked_account import LinkedAccount
from .verification_token import VerificationToken
from .login_attempt import LoginAttempt
from .activity_log import ActivityLog
from .session import Session
