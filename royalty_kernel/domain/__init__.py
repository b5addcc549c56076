"""Pure domain code: values, identifiers, allocation and DTOs.  No I/O."""
