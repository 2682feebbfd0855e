from src.token_tracker.calculator import ExactTokens, Limits, calculate
from src.token_tracker.credentials import CredentialResolver, Credentials, CredentialStatus
from src.token_tracker.engine import UsageEngine
from src.token_tracker.log_scanner import LogScanner, parse_session_file
from src.token_tracker.scheduler import RefreshScheduler
from src.token_tracker.snapshot import UsageSnapshot
from src.token_tracker.usage_client import ApiUsage, RemoteUsageClient

__all__ = [
    "ApiUsage",
    "CredentialResolver",
    "CredentialStatus",
    "Credentials",
    "ExactTokens",
    "Limits",
    "LogScanner",
    "RefreshScheduler",
    "RemoteUsageClient",
    "UsageEngine",
    "UsageSnapshot",
    "calculate",
    "parse_session_file",
]
