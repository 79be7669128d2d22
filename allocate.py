"""Command line entry point: python allocate.py --input allocations.csv --dictionary dict.json"""

from allocation_buddy.allocate import main

if __name__ == '__main__':
    main()
