import sys

import dotenv

from image2taxonomy.worker import main

dotenv.load_dotenv()

if __name__ == "__main__":
    sys.exit(main())
