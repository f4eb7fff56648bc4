"""Module sources — locating module trees and running their post-install hooks."""
