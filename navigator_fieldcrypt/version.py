"""Navigator FieldCrypt Meta information.
   Navigator FieldCrypt encrypts individual record attributes with
   versioned, per-field derived keys.
"""
__title__ = 'navigator_fieldcrypt'
__description__ = (
   'Navigator FieldCrypt provides field-level envelope encryption '
   'for records stored in key-value databases.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-fieldcrypt'
