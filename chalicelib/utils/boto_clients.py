from botocore.config import Config

from chalicelib.utils import config

# explicit timeouts and retries for every DynamoDB call
aws_config_ddb = Config(
    retries={'max_attempts': 5, 'mode': 'standard'},
    region_name=config.aws_region(),
    connect_timeout=config.db_connect_timeout(),
    read_timeout=config.db_read_timeout()
)
