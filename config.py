import os
from dotenv import load_dotenv

# Загрузка переменных окружения из .env файла
load_dotenv()

# Настройки базы данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///scheduler.db")

# Режим планирования: auto - переписывать даты последователей, manual - только помечать
SCHEDULING_MODE = os.getenv("SCHEDULING_MODE", "auto")

# Настройки распределения ресурсов
ALLOCATION_CEILING = int(os.getenv("ALLOCATION_CEILING", "100"))
OVERALLOCATION_CHECK = os.getenv("OVERALLOCATION_CHECK", "1").lower() in ("1", "true", "yes", "on")
MAX_OVERTIME_PERCENTAGE = int(os.getenv("MAX_OVERTIME_PERCENTAGE", "150"))

# Количество знаков после запятой для денежных сумм
CURRENCY_DECIMAL_PLACES = int(os.getenv("CURRENCY_DECIMAL_PLACES", "2"))

# Логирование
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "scheduler.log")
