"""
Command-line interface for the CD48.

The CLI is built using the Click framework. Global options (port, config
file, logging) go before the subcommand.

Examples
--------
Listing candidate ports:
```bash
$ cd48 ports
```

Ten one-second rate measurements on channel 2, saved as CSV:
```bash
$ cd48 --port /dev/ttyACM0 rate -c 2 -d 1 -n 10 --save rates.csv
```

CLI Tree
--------

```
$ cd48 --tree
cli
└── coincidence
└── counts
└── impedance
└── info
└── leds
└── ports
└── rate
└── repeat
└── trigger
```
"""

from .base import cli, tree_option
