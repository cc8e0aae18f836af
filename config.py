import logging
import os
from dotenv import load_dotenv

load_dotenv()

TG_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN')
PROXY_URL = os.getenv('PROXY_URL')
OWNER_CHAT_ID = os.getenv('OWNER_CHAT_ID')

DB_PATH = os.getenv(
    'KIOKU_DB_PATH',
    os.path.join(os.path.dirname(os.path.abspath(__file__)), 'kioku.db'),
)

# Forgetting-curve sweep cadence
SWEEP_INTERVAL_SECONDS = int(os.getenv('SWEEP_INTERVAL_SECONDS', '60'))

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
