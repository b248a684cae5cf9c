from .finder import DuplicateFinder, FindResult
from .errors import DupfindError, RootPathError, OutputSinkError, SettingsError, HashReadError, HashTimeoutError
from .settings import ScanConfig, Settings, resolve_config
from .index.size_index import SizeIndex, SizeGroup, SizeGroupState
from .commands.find_duplicates import Coordinator, ScanOutcome
from .report.duplicate_report import DuplicateReport, DuplicateGroup
from .utils.hash_pool import HashWorkerPool, HashTask, HashResult
from .utils.walker import FileRecord, WalkPolicy, scan_files
