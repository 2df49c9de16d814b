"""Virtual disk storage, filesystem writers and the transactional disk manager."""
