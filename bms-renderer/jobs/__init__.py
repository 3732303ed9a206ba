from jobs.models import JobRecord
from jobs.storage import JobStore
from jobs.stream import LastLineDecoder, decode_last_line
from jobs.dispatcher import JobDispatcher
