
# query-string processors, each receives the list parse_qs produced for one key

def str_one(x):
	return x[0]

def int_one(x):
	return int(x[0])

def list_one(x):
	res = []
	for entry in x:
		for part in entry.split(','):
			part = part.strip()
			if part != '':
				res.append(part)
	return res
